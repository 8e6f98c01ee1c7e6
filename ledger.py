"""Account balance bookkeeping.

Every transaction moves money on one or two accounts. ``delta`` describes that
movement as a list of signed postings; ``BalanceLedger`` writes the postings to
``Account.current_amount``. Nothing else in the code base writes that column,
so ``current_amount == initial_amount + sum of all postings`` holds as long as
every transaction mutation goes through here inside one atomic scope.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from errors import NotFound, ValidationError
from models import (
    MAX_AMOUNT,
    MIN_AMOUNT,
    Account,
    Transaction,
    TransactionType,
    utcnow,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    """The balance-relevant fields of a transaction at one point in time."""

    type: TransactionType
    amount: int
    source_account_id: int
    target_account_id: Optional[int] = None


@dataclass(frozen=True)
class Posting:
    account_id: int
    amount: int


def snapshot(txn: Transaction) -> LedgerEntry:
    return LedgerEntry(
        type=txn.type,
        amount=txn.amount,
        source_account_id=txn.source_account_id,
        target_account_id=txn.target_account_id,
    )


def delta(entry: LedgerEntry) -> list[Posting]:
    if entry.type == TransactionType.income:
        return [Posting(entry.source_account_id, entry.amount)]
    if entry.type == TransactionType.expense:
        return [Posting(entry.source_account_id, -entry.amount)]
    if entry.type == TransactionType.transfer:
        if entry.target_account_id is None:
            raise NotFound("Target account not found")
        return [
            Posting(entry.source_account_id, -entry.amount),
            Posting(entry.target_account_id, entry.amount),
        ]
    raise ValueError(f"Unknown transaction type: {entry.type}")


def negate(postings: list[Posting]) -> list[Posting]:
    return [Posting(p.account_id, -p.amount) for p in postings]


class BalanceLedger:
    def __init__(self, session: Session) -> None:
        self.session = session

    def apply(self, entry: LedgerEntry) -> None:
        self._post(delta(entry))

    def revert(self, entry: LedgerEntry) -> None:
        self._post(negate(delta(entry)))

    def replace(self, old: LedgerEntry, new: LedgerEntry) -> None:
        # Always both phases: type or account changes reshape the postings.
        self.revert(old)
        self.apply(new)

    def rebase(self, account: Account, initial_amount: int) -> None:
        """Change an account's opening balance, keeping its transactions' effect."""
        fresh = self._load(account.id)
        shift = initial_amount - fresh.initial_amount
        balance = fresh.current_amount + shift
        if not MIN_AMOUNT <= balance <= MAX_AMOUNT:
            raise ValidationError("Account balance out of range")
        fresh.initial_amount = initial_amount
        fresh.current_amount = balance
        fresh.updated_at = utcnow()
        self.session.flush()
        logger.debug(f"ledger_rebase: account={fresh.id} shift={shift}")

    def derive(self, account_id: int) -> int:
        """Recompute a balance from scratch out of the transaction table."""
        account = self.session.get(Account, account_id)
        if account is None:
            raise NotFound("Account not found")

        signed = case(
            (Transaction.type == TransactionType.income, Transaction.amount),
            else_=-Transaction.amount,
        )
        outgoing = self.session.execute(
            select(func.coalesce(func.sum(signed), 0)).where(
                Transaction.source_account_id == account_id
            )
        ).scalar_one()
        incoming = self.session.execute(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                Transaction.type == TransactionType.transfer,
                Transaction.target_account_id == account_id,
            )
        ).scalar_one()
        return account.initial_amount + int(outgoing) + int(incoming)

    def _load(self, account_id: int) -> Account:
        # populate_existing would discard unflushed edits on the row.
        self.session.flush()
        account = self.session.get(
            Account, account_id, populate_existing=True, with_for_update=True
        )
        if account is None:
            raise NotFound("Referenced account not found")
        return account

    def _post(self, postings: list[Posting]) -> None:
        now = utcnow()
        for posting in postings:
            # Re-read per posting: an earlier posting in this scope may have
            # touched the same row.
            account = self._load(posting.account_id)
            balance = account.current_amount + posting.amount
            if not MIN_AMOUNT <= balance <= MAX_AMOUNT:
                raise ValidationError("Account balance out of range")
            account.current_amount = balance
            account.updated_at = now
            self.session.flush()
            logger.debug(
                f"ledger_post: account={account.id} amount={posting.amount} "
                f"balance={account.current_amount}"
            )
