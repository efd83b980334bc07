from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from models import MAX_AMOUNT_CENTS, TransactionType


class TransactionIn(BaseModel):
    date: date
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., ge=1, le=MAX_AMOUNT_CENTS)
    note: str = Field(default="", max_length=500)


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date
    type: TransactionType
    category: str
    amount_cents: int
    note: str
    created_at: datetime


class UserIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1, max_length=72)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
