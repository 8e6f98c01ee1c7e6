from datetime import datetime

import pytest

from database import Base, build_engine, build_session_factory
from errors import NotFound
from ledger import BalanceLedger, LedgerEntry, Posting, delta, negate
from models import AccountType, TransactionType
from schemas import AccountIn, TransactionIn
from services import AccountService, TransactionService


def make_session():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    return build_session_factory(engine)()


def make_account(session, name: str, amount: int, type=AccountType.bank):
    return AccountService(session).create(
        AccountIn(name=name, type=type, initial_amount=amount)
    )


def trx(type, amount, source, target=None, category=None, at=None):
    return TransactionIn(
        type=type,
        amount=amount,
        transaction_at=at or datetime(2025, 1, 5, 12, 0),
        source_account_id=source,
        target_account_id=target,
        category_id=category,
        description="test",
    )


def balance(session, account_id: int) -> int:
    return AccountService(session).get(account_id).current_amount


def test_delta_switches_on_transaction_type() -> None:
    assert delta(LedgerEntry(TransactionType.income, 500, 1)) == [Posting(1, 500)]
    assert delta(LedgerEntry(TransactionType.expense, 500, 1)) == [Posting(1, -500)]
    assert delta(LedgerEntry(TransactionType.transfer, 500, 1, 2)) == [
        Posting(1, -500),
        Posting(2, 500),
    ]


def test_delta_of_transfer_without_target_is_not_found() -> None:
    with pytest.raises(NotFound):
        delta(LedgerEntry(TransactionType.transfer, 500, 1, None))


def test_negate_flips_every_posting() -> None:
    postings = delta(LedgerEntry(TransactionType.transfer, 250, 3, 4))
    assert negate(postings) == [Posting(3, 250), Posting(4, -250)]


def test_revert_undoes_apply_for_each_shape() -> None:
    session = make_session()
    a = make_account(session, "Wallet", 10_000, AccountType.cash)
    b = make_account(session, "Card", -2_500, AccountType.credit)
    ledger = BalanceLedger(session)

    entries = [
        LedgerEntry(TransactionType.income, 1_234, a.id),
        LedgerEntry(TransactionType.expense, 99_999, b.id),
        LedgerEntry(TransactionType.transfer, 700, a.id, b.id),
        LedgerEntry(TransactionType.transfer, 0, b.id, a.id),
    ]
    for entry in entries:
        ledger.apply(entry)
    for entry in reversed(entries):
        ledger.revert(entry)

    assert balance(session, a.id) == 10_000
    assert balance(session, b.id) == -2_500


def test_apply_against_missing_account_is_not_found() -> None:
    session = make_session()
    with pytest.raises(NotFound, match="Referenced account not found"):
        BalanceLedger(session).apply(LedgerEntry(TransactionType.income, 10, 404))


def test_income_adds_to_source_balance() -> None:
    session = make_session()
    acc1 = make_account(session, "acc1", 10_000)

    TransactionService(session).create(trx(TransactionType.income, 5_000, acc1.id))

    assert balance(session, acc1.id) == 15_000


def test_transfer_moves_money_and_delete_restores_it() -> None:
    session = make_session()
    acc1 = make_account(session, "acc1", 10_000)
    acc2 = make_account(session, "acc2", 20_000)
    txns = TransactionService(session)

    transfer = txns.create(trx(TransactionType.transfer, 3_000, acc1.id, acc2.id))
    assert balance(session, acc1.id) == 7_000
    assert balance(session, acc2.id) == 23_000

    txns.delete(transfer.id)
    assert balance(session, acc1.id) == 10_000
    assert balance(session, acc2.id) == 20_000


def test_expense_amount_edit_reverts_then_applies() -> None:
    session = make_session()
    acc1 = make_account(session, "acc1", 10_000)
    txns = TransactionService(session)

    expense = txns.create(trx(TransactionType.expense, 1_000, acc1.id))
    assert balance(session, acc1.id) == 9_000

    txns.update(expense.id, trx(TransactionType.expense, 1_500, acc1.id))
    assert balance(session, acc1.id) == 8_500


def test_update_changing_type_reshapes_postings() -> None:
    session = make_session()
    acc1 = make_account(session, "acc1", 10_000)
    acc2 = make_account(session, "acc2", 20_000)
    txns = TransactionService(session)

    txn = txns.create(trx(TransactionType.expense, 1_000, acc1.id))
    txns.update(txn.id, trx(TransactionType.transfer, 2_000, acc1.id, acc2.id))
    assert balance(session, acc1.id) == 8_000
    assert balance(session, acc2.id) == 22_000

    txns.update(txn.id, trx(TransactionType.income, 400, acc2.id))
    assert balance(session, acc1.id) == 10_000
    assert balance(session, acc2.id) == 20_400
    assert txns.get(txn.id).target_account_id is None


def test_update_swapping_source_and_target() -> None:
    session = make_session()
    a = make_account(session, "a", 10_000)
    b = make_account(session, "b", 20_000)
    txns = TransactionService(session)

    txn = txns.create(trx(TransactionType.transfer, 500, a.id, b.id))
    txns.update(txn.id, trx(TransactionType.transfer, 200, b.id, a.id))

    assert balance(session, a.id) == 10_200
    assert balance(session, b.id) == 19_800


def test_failed_update_leaves_balances_untouched() -> None:
    session = make_session()
    acc1 = make_account(session, "acc1", 10_000)
    txns = TransactionService(session)
    expense = txns.create(trx(TransactionType.expense, 1_000, acc1.id))

    with pytest.raises(NotFound):
        txns.update(expense.id, trx(TransactionType.expense, 1_000, 404))

    assert balance(session, acc1.id) == 9_000
    assert txns.get(expense.id).source_account_id == acc1.id


def test_balances_match_derived_totals_after_mixed_operations() -> None:
    session = make_session()
    cash = make_account(session, "Cash", 50_000, AccountType.cash)
    bank = make_account(session, "Bank", 120_000)
    card = make_account(session, "Card", 0, AccountType.credit)
    txns = TransactionService(session)
    ledger = BalanceLedger(session)

    salary = txns.create(trx(TransactionType.income, 300_000, bank.id))
    rent = txns.create(trx(TransactionType.expense, 150_000, bank.id))
    topup = txns.create(trx(TransactionType.transfer, 20_000, bank.id, cash.id))
    groceries = txns.create(trx(TransactionType.expense, 7_450, card.id))
    txns.create(trx(TransactionType.transfer, 7_450, bank.id, card.id))

    txns.update(rent.id, trx(TransactionType.expense, 145_000, bank.id))
    txns.update(topup.id, trx(TransactionType.transfer, 25_000, bank.id, card.id))
    txns.update(groceries.id, trx(TransactionType.expense, 7_450, cash.id))
    txns.delete(salary.id)

    for account in (cash, bank, card):
        assert balance(session, account.id) == ledger.derive(account.id)

    assert balance(session, cash.id) == 42_550
    assert balance(session, bank.id) == -57_450
    assert balance(session, card.id) == 32_450
