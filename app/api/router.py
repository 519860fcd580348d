from fastapi import APIRouter
from app.api.endpoints import auth, sql, ai

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(auth.router)
api_router.include_router(sql.router)
api_router.include_router(ai.router)
