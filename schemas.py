from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from models import MAX_AMOUNT, MIN_AMOUNT, AccountType, TransactionType


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    initial_amount: int = Field(default=0, ge=MIN_AMOUNT, le=MAX_AMOUNT)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    parent_id: Optional[int] = None


class TransactionIn(BaseModel):
    type: TransactionType
    amount: int = Field(..., ge=0, le=MAX_AMOUNT)
    transaction_at: datetime
    source_account_id: int
    target_account_id: Optional[int] = None
    category_id: Optional[int] = None
    description: str = Field(default="", max_length=200)
    note: Optional[str] = None
