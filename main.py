import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy.orm import Session

from config import get_settings
from database import get_session_factory
from errors import AccountInUse, LedgerError, NotFound, ReferenceViolation, StoreBusy
from models import Account, Category, Transaction, TransactionType
from periods import Period, resolve_month
from schemas import AccountIn, CategoryIn, TransactionIn
from services import (
    AccountService,
    CategoryService,
    MetricsService,
    TransactionFilters,
    TransactionService,
)


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Pocket Ledger")


def get_db():
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def http_error(exc: LedgerError) -> HTTPException:
    if isinstance(exc, NotFound):
        status = 404
    elif isinstance(exc, (ReferenceViolation, AccountInUse)):
        status = 409
    elif isinstance(exc, StoreBusy):
        status = 503
    else:
        status = 400
    logger.info(f"request_rejected: status={status} error={type(exc).__name__}")
    return HTTPException(status_code=status, detail=str(exc))


def account_out(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "initial_amount": account.initial_amount,
        "current_amount": account.current_amount,
        "created_at": account.created_at.isoformat(),
        "updated_at": account.updated_at.isoformat() if account.updated_at else None,
    }


def category_out(category: Category) -> dict[str, object]:
    parent = category.parent
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "parent": {"id": parent.id, "name": parent.name} if parent else None,
        "created_at": category.created_at.isoformat(),
        "updated_at": category.updated_at.isoformat() if category.updated_at else None,
    }


def transaction_out(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "type": txn.type.value,
        "description": txn.description,
        "amount": txn.amount,
        "transaction_at": txn.transaction_at.isoformat(),
        "note": txn.note,
        "category_id": txn.category_id,
        "category": txn.category.name if txn.category else None,
        "source_account_id": txn.source_account_id,
        "target_account_id": txn.target_account_id,
        "created_at": txn.created_at.isoformat(),
        "updated_at": txn.updated_at.isoformat() if txn.updated_at else None,
    }


@app.get("/api/accounts")
def list_accounts(db: Session = Depends(get_db)):
    return [account_out(a) for a in AccountService(db).list_all()]


@app.get("/api/accounts/total-balance")
def total_balance(db: Session = Depends(get_db)):
    return {"total_balance": AccountService(db).total_balance()}


@app.post("/api/accounts", status_code=201)
def create_account(payload: AccountIn, db: Session = Depends(get_db)):
    try:
        return account_out(AccountService(db).create(payload))
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.get("/api/accounts/{account_id}")
def get_account(account_id: int, db: Session = Depends(get_db)):
    try:
        return account_out(AccountService(db).get(account_id))
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.put("/api/accounts/{account_id}")
def update_account(account_id: int, payload: AccountIn, db: Session = Depends(get_db)):
    try:
        return account_out(AccountService(db).update(account_id, payload))
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(account_id: int, db: Session = Depends(get_db)):
    try:
        AccountService(db).delete(account_id)
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.get("/api/categories")
def list_categories(roots_only: bool = False, db: Session = Depends(get_db)):
    service = CategoryService(db)
    categories = service.roots() if roots_only else service.list_all()
    return [category_out(c) for c in categories]


@app.post("/api/categories", status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        return category_out(CategoryService(db).create(payload))
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.get("/api/categories/{category_id}")
def get_category(category_id: int, db: Session = Depends(get_db)):
    try:
        return category_out(CategoryService(db).get(category_id))
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.get("/api/categories/{category_id}/subcategories")
def list_subcategories(category_id: int, db: Session = Depends(get_db)):
    try:
        return [category_out(c) for c in CategoryService(db).subcategories(category_id)]
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int, payload: CategoryIn, db: Session = Depends(get_db)
):
    try:
        return category_out(CategoryService(db).update(category_id, payload))
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except LedgerError as exc:
        raise http_error(exc) from exc


def period_from_query(year: Optional[int] = None, month: Optional[int] = None) -> Period:
    try:
        return resolve_month(year, month, get_settings().timezone)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_query(
    period: Period = Depends(period_from_query),
    type: Optional[TransactionType] = None,
    category: Optional[int] = None,
    account: Optional[int] = None,
) -> TransactionFilters:
    return TransactionFilters(
        period=period, type=type, category_id=category, account_id=account
    )


@app.get("/api/transactions")
def list_transactions(
    filters: TransactionFilters = Depends(filters_from_query),
    db: Session = Depends(get_db),
):
    return [transaction_out(t) for t in TransactionService(db).filtered(filters)]


@app.post("/api/transactions", status_code=201)
def create_transaction(payload: TransactionIn, db: Session = Depends(get_db)):
    try:
        return transaction_out(TransactionService(db).create(payload))
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.get("/api/transactions/{transaction_id}")
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        return transaction_out(TransactionService(db).get(transaction_id))
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int, payload: TransactionIn, db: Session = Depends(get_db)
):
    try:
        return transaction_out(TransactionService(db).update(transaction_id, payload))
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.get("/api/metrics/totals")
def metrics_totals(
    period: Period = Depends(period_from_query), db: Session = Depends(get_db)
):
    return MetricsService(db).totals(period)


@app.get("/api/metrics/category-breakdown")
def metrics_category_breakdown(
    type: TransactionType = TransactionType.expense,
    period: Period = Depends(period_from_query),
    db: Session = Depends(get_db),
):
    return MetricsService(db).category_breakdown(period, type)
