# app/models.py
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class Species(str, Enum):
    cow = "cow"
    buffalo = "buffalo"


class PDResult(str, Enum):
    positive = "positive"
    negative = "negative"


class RateSource(str, Enum):
    matrix = "matrix"
    flat = "flat"


# ---------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------


class RateMatrixEntry(SQLModel, table=True):
    __tablename__ = "rate_matrix"
    __table_args__ = (
        UniqueConstraint("species", "fat", "snf", "effective_from", name="uq_rate_matrix_cell"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    species: Species = Field(index=True)
    fat: Decimal = Field(max_digits=5, decimal_places=2)
    snf: Decimal = Field(max_digits=5, decimal_places=2)
    rate: Decimal = Field(max_digits=10, decimal_places=2)
    effective_from: date = Field(index=True)


class MilkRateSetting(SQLModel, table=True):
    """Flat, composition independent price per liter."""

    __tablename__ = "milk_rate_setting"

    id: Optional[int] = Field(default=None, primary_key=True)
    rate_per_liter: Decimal = Field(max_digits=10, decimal_places=2)
    effective_from: date = Field(default_factory=date.today)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class MilkCollection(SQLModel, table=True):
    __tablename__ = "milk_collection"

    id: Optional[int] = Field(default=None, primary_key=True)
    collection_date: date = Field(index=True)
    species: Species
    quantity_liters: Decimal = Field(max_digits=10, decimal_places=2)
    fat: Decimal = Field(max_digits=5, decimal_places=2)
    snf: Decimal = Field(max_digits=5, decimal_places=2)
    rate_per_liter: Decimal = Field(max_digits=10, decimal_places=2)
    rate_source: RateSource
    total_amount: Decimal = Field(max_digits=12, decimal_places=2)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# ---------------------------------------------------------------------
# Herd
# ---------------------------------------------------------------------


class Cow(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    cow_number: int = Field(index=True, unique=True)
    name: Optional[str] = None
    species: Species = Field(default=Species.cow)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class AIRecord(SQLModel, table=True):
    __tablename__ = "ai_record"

    id: Optional[int] = Field(default=None, primary_key=True)
    cow_id: int = Field(foreign_key="cow.id", index=True)
    ai_date: date = Field(index=True)
    service_number: Optional[int] = None
    ai_status: str = Field(default="pending")  # pending / failed
    pd_done: bool = Field(default=False)
    pd_result: Optional[PDResult] = None
    pd_date: Optional[date] = None
    expected_delivery_date: Optional[date] = None
    actual_delivery_date: Optional[date] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
