from typing import Annotated

from fastapi import APIRouter, Depends

from app.core import models, schemas
from app.core.security import get_current_user
from app.core.sql_sandbox.sandbox import SQLSandbox, get_sql_sandbox
from app.ai_feature import service
from app.ai_feature.llm_client import ChatCompletionClient, get_llm_client

router = APIRouter(prefix="/ai", tags=["AI Assistant"])

user_dep = Annotated[models.User, Depends(get_current_user)]


@router.post("/query", response_model=schemas.TextToSqlResult)
async def ask_data_question(
    payload: schemas.AiQueryRequest,
    current_user: user_dep,
    sandbox: Annotated[SQLSandbox, Depends(get_sql_sandbox)],
    llm: Annotated[ChatCompletionClient, Depends(get_llm_client)],
):
    """
    Answer a question about companies, processes, pain points or solutions
    with a generated, sandboxed SQL query.
    """
    return await service.generate_and_execute_query(
        payload.question, sandbox, llm, user_id=str(current_user.id)
    )


@router.post("/classify")
async def classify_question(payload: schemas.AiQueryRequest, current_user: user_dep):
    """Tell the chat UI whether a message should be routed to /ai/query."""
    return {"is_data_question": service.is_data_question(payload.question)}
