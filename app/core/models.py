from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    String,
    Numeric,
    TIMESTAMP,
    Text,
    JSON,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from app.core.database import Base


def _created_at():
    return Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


def _updated_at():
    return Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


# =========================
# User (login only, requester identity for the SQL sandbox)
# =========================
class User(Base):
    __tablename__ = "users_table"

    id = Column(Integer, primary_key=True, autoincrement=True)

    email = Column(String, nullable=False, unique=True, index=True)
    password = Column(String, nullable=False)
    role = Column(String, nullable=False, server_default="user")

    created_at = _created_at()


# =========================
# Company -> Business Unit -> Process
# =========================
class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, autoincrement=True)

    name = Column(Text, nullable=False)
    industry = Column(Text)
    anzsic = Column(Text)  # ANZSIC industry code

    created_at = _created_at()
    updated_at = _updated_at()

    # Relationships
    business_units = relationship(
        "BusinessUnit",
        back_populates="company",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class BusinessUnit(Base):
    __tablename__ = "business_units"

    id = Column(Integer, primary_key=True, autoincrement=True)

    company_id = Column(
        Integer,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Self reference for nested units
    parent_id = Column(
        Integer, ForeignKey("business_units.id", ondelete="SET NULL"), nullable=True
    )

    name = Column(Text, nullable=False)
    description = Column(Text)
    fte = Column(Integer, nullable=False, default=0)

    created_at = _created_at()
    updated_at = _updated_at()

    # Relationships
    company = relationship("Company", back_populates="business_units")
    processes = relationship("Process", back_populates="business_unit")


class Process(Base):
    __tablename__ = "processes"

    id = Column(Integer, primary_key=True, autoincrement=True)

    business_id = Column(
        Integer,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    business_unit_id = Column(
        Integer,
        ForeignKey("business_units.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    name = Column(Text, nullable=False)
    description = Column(Text)
    volume = Column(Numeric)
    volume_unit = Column(Text)
    fte = Column(Numeric)
    owner = Column(Text)
    systems_used = Column(Text)

    created_at = _created_at()
    updated_at = _updated_at()

    # Relationships
    business_unit = relationship("BusinessUnit", back_populates="processes")


# =========================
# Taxonomy (3 levels)
# =========================
class TaxonomyCategory(Base):
    __tablename__ = "taxonomy_categories"

    id = Column(Integer, primary_key=True, autoincrement=True)

    name = Column(Text, nullable=False)
    parent_id = Column(
        Integer, ForeignKey("taxonomy_categories.id", ondelete="SET NULL")
    )
    level = Column(Integer, nullable=False)  # 1, 2 or 3

    created_at = _created_at()
    updated_at = _updated_at()


# =========================
# Pain Point
# =========================
class PainPoint(Base):
    """
    A problem statement captured against a company / business unit.
    total_hours_per_month is the headline impact metric.
    """

    __tablename__ = "pain_points"

    id = Column(Integer, primary_key=True, autoincrement=True)

    statement = Column(Text, nullable=False)
    impact_type = Column(JSON)  # list of impact types
    business_impact = Column(Text)
    magnitude = Column(Numeric)  # 1-10
    frequency = Column(Numeric)  # 1-10
    time_per_unit = Column(Numeric)
    total_hours_per_month = Column(Numeric)
    fte_count = Column(Numeric)
    root_cause = Column(Text)
    workarounds = Column(Text)
    dependencies = Column(Text)
    risk_level = Column(String)  # High / Medium / Low
    effort_solving = Column(Numeric)  # 1-10

    taxonomy_level1_id = Column(
        Integer, ForeignKey("taxonomy_categories.id", ondelete="SET NULL")
    )
    taxonomy_level2_id = Column(
        Integer, ForeignKey("taxonomy_categories.id", ondelete="SET NULL")
    )
    taxonomy_level3_id = Column(
        Integer, ForeignKey("taxonomy_categories.id", ondelete="SET NULL")
    )
    company_id = Column(
        Integer, ForeignKey("companies.id", ondelete="SET NULL"), index=True
    )
    business_unit_id = Column(
        Integer, ForeignKey("business_units.id", ondelete="SET NULL"), index=True
    )

    created_at = _created_at()
    updated_at = _updated_at()


# =========================
# Use Case (a.k.a. solution)
# =========================
class UseCase(Base):
    __tablename__ = "use_cases"

    id = Column(Integer, primary_key=True, autoincrement=True)

    name = Column(Text, nullable=False)
    solution_provider = Column(Text)  # "Adobe", "Microsoft", "UiPath"
    problem_to_solve = Column(Text, nullable=False)
    solution_overview = Column(Text, nullable=False)
    complexity = Column(String, nullable=False)  # Low / Medium / High
    data_requirements = Column(JSON)
    systems_impacted = Column(Text)
    risks = Column(Text)
    estimated_delivery_time = Column(Text)
    cost_range = Column(Text)
    confidence_level = Column(Text)

    process_id = Column(Integer, ForeignKey("processes.id", ondelete="CASCADE"))
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="SET NULL"))
    business_unit_id = Column(
        Integer, ForeignKey("business_units.id", ondelete="SET NULL")
    )

    created_at = _created_at()
    updated_at = _updated_at()


# =========================
# Junction tables
# =========================
class PainPointUseCase(Base):
    __tablename__ = "pain_point_use_cases"

    id = Column(Integer, primary_key=True, autoincrement=True)

    pain_point_id = Column(
        Integer,
        ForeignKey("pain_points.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    use_case_id = Column(
        Integer,
        ForeignKey("use_cases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    percentage_solved = Column(Numeric)
    notes = Column(Text)

    created_at = _created_at()
    updated_at = _updated_at()


class ProcessPainPoint(Base):
    __tablename__ = "process_pain_points"

    id = Column(Integer, primary_key=True, autoincrement=True)

    process_id = Column(
        Integer, ForeignKey("processes.id", ondelete="CASCADE"), nullable=False
    )
    pain_point_id = Column(
        Integer, ForeignKey("pain_points.id", ondelete="CASCADE"), nullable=False
    )
