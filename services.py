from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from database import atomic
from errors import AccountInUse, NotFound, ReferenceViolation, ValidationError
from hierarchy import CategoryHierarchy
from ledger import BalanceLedger, LedgerEntry, snapshot
from models import Account, Category, Transaction, TransactionType, utcnow
from periods import Period
from schemas import AccountIn, CategoryIn, TransactionIn


logger = logging.getLogger(__name__)


def _clean_name(name: str, what: str) -> str:
    clean = (name or "").strip()
    if not clean:
        raise ValidationError(f"{what} name cannot be empty")
    return clean


def _as_utc_naive(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class TransactionFilters:
    period: Optional[Period] = None
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    account_id: Optional[int] = None


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Account]:
        stmt = select(Account).order_by(Account.name, Account.id)
        return list(self.session.scalars(stmt))

    def find(self, account_id: int) -> Optional[Account]:
        return self.session.get(Account, account_id)

    def get(self, account_id: int) -> Account:
        account = self.find(account_id)
        if account is None:
            raise NotFound("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        name = _clean_name(data.name, "Account")
        with atomic(self.session):
            account = Account(
                name=name,
                type=data.type,
                initial_amount=data.initial_amount,
                current_amount=data.initial_amount,
            )
            self.session.add(account)
            self.session.flush()
        logger.info(
            f"account_created: id={account.id} type={account.type.value} "
            f"initial_amount={account.initial_amount}"
        )
        return account

    def update(self, account_id: int, data: AccountIn) -> Account:
        name = _clean_name(data.name, "Account")
        with atomic(self.session):
            account = self.get(account_id)
            if data.initial_amount != account.initial_amount:
                BalanceLedger(self.session).rebase(account, data.initial_amount)
            account.name = name
            account.type = data.type
            account.updated_at = utcnow()
            self.session.flush()
        logger.info(f"account_updated: id={account.id}")
        return account

    def delete(self, account_id: int) -> None:
        with atomic(self.session):
            account = self.get(account_id)
            in_use = self.session.execute(
                select(func.count(Transaction.id)).where(
                    or_(
                        Transaction.source_account_id == account_id,
                        Transaction.target_account_id == account_id,
                    )
                )
            ).scalar_one()
            if in_use:
                logger.warning(
                    f"account_delete_rejected: id={account_id} transactions={in_use}"
                )
                raise AccountInUse("Account is referenced by transactions")
            self.session.delete(account)
        logger.info(f"account_deleted: id={account_id}")

    def total_balance(self) -> int:
        stmt = select(func.coalesce(func.sum(Account.current_amount), 0))
        return int(self.session.execute(stmt).scalar_one())


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .options(joinedload(Category.parent))
            .order_by(Category.name, Category.id)
        )
        return list(self.session.scalars(stmt))

    def roots(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.parent_id.is_(None))
            .order_by(Category.name, Category.id)
        )
        return list(self.session.scalars(stmt))

    def subcategories(self, parent_id: int) -> list[Category]:
        if self.session.get(Category, parent_id) is None:
            raise NotFound("Parent category not found")
        stmt = (
            select(Category)
            .where(Category.parent_id == parent_id)
            .order_by(Category.name, Category.id)
        )
        return list(self.session.scalars(stmt))

    def find(self, category_id: int) -> Optional[Category]:
        return self.session.get(Category, category_id)

    def get(self, category_id: int) -> Category:
        category = self.find(category_id)
        if category is None:
            raise NotFound("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        name = _clean_name(data.name, "Category")
        with atomic(self.session):
            parent = CategoryHierarchy(self.session).resolve_for(None, data.parent_id)
            category = Category(name=name, type=data.type, parent=parent)
            self.session.add(category)
            self.session.flush()
        logger.info(
            f"category_created: id={category.id} type={category.type.value} "
            f"parent={category.parent_id}"
        )
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        name = _clean_name(data.name, "Category")
        with atomic(self.session):
            category = self.get(category_id)
            parent = CategoryHierarchy(self.session).resolve_for(
                category_id, data.parent_id
            )
            category.name = name
            category.type = data.type
            category.parent = parent
            category.updated_at = utcnow()
            self.session.flush()
        logger.info(f"category_updated: id={category.id} parent={category.parent_id}")
        return category

    def delete(self, category_id: int) -> None:
        with atomic(self.session):
            category = self.get(category_id)
            self.session.delete(category)
        # Referencing rows were changed by ON DELETE SET NULL in the database.
        self.session.expire_all()
        logger.info(f"category_deleted: id={category_id}")


class TransactionService:
    """Creates, edits and removes transactions together with their balance effect.

    Each mutation is a single atomic scope: the row write and every account
    posting commit together or not at all.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def _validated(self, data: TransactionIn) -> dict[str, object]:
        if data.amount < 0:
            raise ValidationError("Amount cannot be negative")
        target_account_id = data.target_account_id
        if data.type == TransactionType.transfer:
            if target_account_id is None:
                raise ValidationError("Target account is required for transfers")
            if target_account_id == data.source_account_id:
                raise ValidationError(
                    "Target account cannot be the same as source account"
                )
        else:
            target_account_id = None
            if data.category_id is None and get_settings().require_category:
                raise ValidationError("Category is required")
        return {
            "type": data.type,
            "amount": data.amount,
            "transaction_at": _as_utc_naive(data.transaction_at),
            "source_account_id": data.source_account_id,
            "target_account_id": target_account_id,
            "category_id": data.category_id,
            "description": (data.description or "").strip(),
            "note": data.note,
        }

    def _flush_row(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            if "foreign key" in str(exc.orig).lower():
                raise ReferenceViolation(
                    "Referenced account or category not found"
                ) from exc
            raise

    def find(self, transaction_id: int) -> Optional[Transaction]:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category),
                joinedload(Transaction.source_account),
                joinedload(Transaction.target_account),
            )
            .where(Transaction.id == transaction_id)
        )
        return self.session.scalar(stmt)

    def get(self, transaction_id: int) -> Transaction:
        txn = self.find(transaction_id)
        if txn is None:
            raise NotFound("Transaction not found")
        return txn

    def _get_fresh(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id, populate_existing=True)
        if txn is None:
            raise NotFound("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        fields = self._validated(data)
        with atomic(self.session):
            txn = Transaction(**fields)
            self.session.add(txn)
            self._flush_row()
            BalanceLedger(self.session).apply(snapshot(txn))
        logger.info(
            f"transaction_created: id={txn.id} type={txn.type.value} "
            f"amount={txn.amount} source={txn.source_account_id} "
            f"target={txn.target_account_id}"
        )
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        fields = self._validated(data)
        with atomic(self.session):
            txn = self._get_fresh(transaction_id)
            old = snapshot(txn)
            new = LedgerEntry(
                type=data.type,
                amount=data.amount,
                source_account_id=fields["source_account_id"],
                target_account_id=fields["target_account_id"],
            )
            BalanceLedger(self.session).replace(old, new)
            for key, value in fields.items():
                setattr(txn, key, value)
            txn.updated_at = utcnow()
            self._flush_row()
        self.session.refresh(txn)
        logger.info(
            f"transaction_updated: id={txn.id} type={txn.type.value} "
            f"amount={txn.amount} previous_amount={old.amount}"
        )
        return txn

    def delete(self, transaction_id: int) -> None:
        with atomic(self.session):
            txn = self._get_fresh(transaction_id)
            BalanceLedger(self.session).revert(snapshot(txn))
            self.session.delete(txn)
            self.session.flush()
        logger.info(f"transaction_deleted: id={transaction_id}")

    def _filtered_stmt(self, filters: TransactionFilters):
        stmt = select(Transaction).options(
            joinedload(Transaction.category),
            joinedload(Transaction.source_account),
            joinedload(Transaction.target_account),
        )
        if filters.period is not None:
            stmt = stmt.where(
                Transaction.transaction_at >= filters.period.start,
                Transaction.transaction_at < filters.period.end,
            )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category_id is not None:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.account_id is not None:
            stmt = stmt.where(
                or_(
                    Transaction.source_account_id == filters.account_id,
                    Transaction.target_account_id == filters.account_id,
                )
            )
        return stmt.order_by(Transaction.transaction_at.desc(), Transaction.id.asc())

    def filtered(self, filters: TransactionFilters) -> Iterator[Transaction]:
        return iter(self.session.scalars(self._filtered_stmt(filters)))

    def list(self, filters: TransactionFilters) -> list[Transaction]:
        return list(self.session.scalars(self._filtered_stmt(filters)))


class MetricsService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def totals(self, period: Period) -> dict[str, int]:
        rows = self.session.execute(
            select(Transaction.type, func.coalesce(func.sum(Transaction.amount), 0))
            .where(
                Transaction.transaction_at >= period.start,
                Transaction.transaction_at < period.end,
                Transaction.type != TransactionType.transfer,
            )
            .group_by(Transaction.type)
        ).all()
        by_type = {row[0]: int(row[1]) for row in rows}
        income = by_type.get(TransactionType.income, 0)
        expense = by_type.get(TransactionType.expense, 0)
        return {"income": income, "expense": expense, "net": income - expense}

    def category_breakdown(
        self, period: Period, txn_type: TransactionType
    ) -> list[dict[str, object]]:
        total = func.sum(Transaction.amount).label("total")
        rows = self.session.execute(
            select(Transaction.category_id, Category.name, total)
            .outerjoin(Category, Category.id == Transaction.category_id)
            .where(
                Transaction.transaction_at >= period.start,
                Transaction.transaction_at < period.end,
                Transaction.type == txn_type,
            )
            .group_by(Transaction.category_id, Category.name)
            .order_by(total.desc(), Category.name)
        ).all()
        return [
            {"category_id": row[0], "name": row[1], "amount": int(row[2])}
            for row in rows
        ]
