from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


# Range of the BigInteger amount columns.
MAX_AMOUNT = 2**63 - 1
MIN_AMOUNT = -(2**63)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AccountType(str, Enum):
    cash = "cash"
    bank = "bank"
    credit = "credit"
    ewallet = "ewallet"
    emoney = "emoney"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    initial_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    # Written only by ledger.BalanceLedger.
    current_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    parent_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )

    parent: Mapped[Optional["Category"]] = relationship(
        "Category", remote_side="Category.id", back_populates="children"
    )
    children: Mapped[list["Category"]] = relationship(
        "Category", back_populates="parent", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_categories_parent_id", "parent_id"),
        CheckConstraint(
            "parent_id IS NULL OR parent_id <> id", name="ck_category_not_own_parent"
        ),
        {"sqlite_autoincrement": True},
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    description: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    source_account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    target_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL")
    )

    category: Mapped[Optional["Category"]] = relationship("Category")
    source_account: Mapped["Account"] = relationship(
        "Account", foreign_keys=[source_account_id]
    )
    target_account: Mapped[Optional["Account"]] = relationship(
        "Account", foreign_keys=[target_account_id]
    )

    __table_args__ = (
        Index("ix_transactions_transaction_at", "transaction_at"),
        Index("ix_transactions_category_id", "category_id"),
        Index("ix_transactions_source_account_id", "source_account_id"),
        Index("ix_transactions_target_account_id", "target_account_id"),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "target_account_id IS NULL OR target_account_id <> source_account_id",
            name="ck_transactions_distinct_accounts",
        ),
        {"sqlite_autoincrement": True},
    )
