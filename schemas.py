from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import BudgetPeriod, TransactionType


class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return value.strip()

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class TransactionIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    type: TransactionType
    date: date

    @field_validator("description", mode="before")
    @classmethod
    def _default_description(cls, value: Optional[str]) -> str:
        return value or ""


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    limit_cents: int = Field(..., gt=0)
    spent_cents: int = 0
    period: BudgetPeriod


class SessionUser(BaseModel):
    """Identity carried inside the signed session token."""

    model_config = ConfigDict(frozen=True)

    uid: int
    email: str
    name: str
