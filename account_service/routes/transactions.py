import math
from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlmodel import Session, func, select

from .. import ledger
from ..auth import get_user
from ..categorization import Categorizer, get_categorizer, record_correction
from ..db import get_session
from ..errors import ApiError, failure_message
from ..events import TRANSACTION_URGENT, EventPublisher, get_publisher
from ..models import Category, Transaction, TransactionType, as_utc
from ..schemas import (
    CategorizeIn,
    CategorizeOut,
    ImportIn,
    ImportResult,
    Pagination,
    SuggestionOut,
    TransactionEnvelope,
    TransactionIn,
    TransactionOut,
    TransactionPage,
    TransactionPatch,
)

router = APIRouter(prefix="/transactions", tags=["transactions"])
logger = structlog.get_logger(__name__)


def pagination(page: int, limit: int, total: int) -> Pagination:
    return Pagination(
        current=page,
        pages=math.ceil(total / limit) if limit else 0,
        total=total,
        has_next=page * limit < total,
        has_prev=page > 1,
    )


def _notify_urgent(background: BackgroundTasks, publisher: EventPublisher, tx: Transaction) -> None:
    if tx.is_urgent:
        background.add_task(
            publisher.publish,
            TRANSACTION_URGENT,
            {
                "owner_id": tx.owner_id,
                "transaction_id": tx.id,
                "account_id": tx.account_id,
                "amount": str(tx.amount),
                "description": tx.description,
            },
        )


@router.get("", response_model=TransactionPage)
def list_transactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    account_id: Optional[int] = Query(default=None, alias="accountId"),
    tx_type: Optional[TransactionType] = Query(default=None, alias="type"),
    category: Optional[Category] = Query(default=None),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    search: Optional[str] = Query(default=None),
    user=Depends(get_user),
    session: Session = Depends(get_session),
):
    with failure_message("Failed to fetch transactions"):
        filters = [Transaction.owner_id == user]
        if account_id is not None:
            filters.append(Transaction.account_id == account_id)
        if tx_type is not None:
            filters.append(Transaction.type == tx_type)
        if category is not None:
            filters.append(Transaction.category == category)
        if start_date is not None:
            filters.append(Transaction.date >= as_utc(start_date))
        if end_date is not None:
            filters.append(Transaction.date <= as_utc(end_date))
        if search:
            filters.append(Transaction.description.ilike(f"%{search}%"))

        rows = session.exec(
            select(Transaction)
            .where(*filters)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        total = session.exec(select(func.count()).select_from(Transaction).where(*filters)).one()
        return TransactionPage(
            transactions=[TransactionOut.model_validate(t) for t in rows],
            pagination=pagination(page, limit, total),
        )


@router.post("", response_model=TransactionEnvelope, status_code=201)
def create_transaction(
    body: TransactionIn,
    background: BackgroundTasks,
    user=Depends(get_user),
    session: Session = Depends(get_session),
    categorizer: Categorizer = Depends(get_categorizer),
    publisher: EventPublisher = Depends(get_publisher),
):
    with failure_message("Failed to create transaction"):
        category = body.category
        if category is None:
            category = categorizer.categorize(body.description, ledger.signed_amount(body.type, body.amount)).category
        tx = ledger.create_transaction(
            session,
            user,
            body.account_id,
            body.amount,
            body.type,
            category,
            body.description,
            date=body.date,
            tags=body.tags,
            location=body.location,
            is_recurring=body.is_recurring,
            recurring_frequency=body.recurring_frequency,
        )
        _notify_urgent(background, publisher, tx)
        return TransactionEnvelope(message="Transaction created successfully", transaction=TransactionOut.model_validate(tx))


@router.post("/import", response_model=ImportResult)
def import_transactions(
    body: ImportIn,
    background: BackgroundTasks,
    user=Depends(get_user),
    session: Session = Depends(get_session),
    categorizer: Categorizer = Depends(get_categorizer),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Apply uploaded rows one by one; a bad row is reported, not fatal."""
    with failure_message("Failed to import transactions"):
        ledger.get_owned_account(session, user, body.account_id)
        imported, errors = [], []
        for n, row in enumerate(body.transactions, start=1):
            tx_type = row.type or (TransactionType.expense if row.amount < 0 else TransactionType.income)
            category = row.category or categorizer.categorize(
                row.description, ledger.signed_amount(tx_type, row.amount)
            ).category
            try:
                tx = ledger.create_transaction(
                    session, user, body.account_id, row.amount, tx_type, category, row.description, date=row.date
                )
            except ApiError as e:
                errors.append(f"Row {n}: {e.message}")
                continue
            imported.append(tx)
            _notify_urgent(background, publisher, tx)
        logger.info("transactions_imported", account_id=body.account_id, imported=len(imported), errors=len(errors))
        return ImportResult(
            imported=len(imported),
            errors=errors,
            transactions=[TransactionOut.model_validate(t) for t in imported],
        )


@router.post("/categorize", response_model=CategorizeOut)
def categorize(body: CategorizeIn, user=Depends(get_user), categorizer: Categorizer = Depends(get_categorizer)):
    result = categorizer.categorize(body.description, body.amount)
    return CategorizeOut(
        category=result.category,
        confidence=result.confidence,
        suggestions=[
            SuggestionOut(category=s.category, confidence=s.confidence, reason=s.reason)
            for s in categorizer.suggestions(body.description)
        ],
    )


@router.get("/{transaction_id}", response_model=TransactionEnvelope)
def get_transaction(transaction_id: int, user=Depends(get_user), session: Session = Depends(get_session)):
    with failure_message("Failed to fetch transaction"):
        tx = ledger.get_owned_transaction(session, user, transaction_id)
        return TransactionEnvelope(transaction=TransactionOut.model_validate(tx))


@router.put("/{transaction_id}", response_model=TransactionEnvelope)
def update_transaction(
    transaction_id: int,
    body: TransactionPatch,
    user=Depends(get_user),
    session: Session = Depends(get_session),
):
    with failure_message("Failed to update transaction"):
        before = ledger.get_owned_transaction(session, user, transaction_id)
        if before.is_synced and body.category is not None and body.category != before.category:
            record_correction(before.description, before.category, body.category)
        changes = body.model_dump(exclude_unset=True)
        tx = ledger.update_transaction(
            session,
            user,
            transaction_id,
            amount=changes.pop("amount", None),
            tx_type=changes.pop("type", None),
            **changes,
        )
        return TransactionEnvelope(message="Transaction updated successfully", transaction=TransactionOut.model_validate(tx))


@router.delete("/{transaction_id}")
def delete_transaction(transaction_id: int, user=Depends(get_user), session: Session = Depends(get_session)):
    with failure_message("Failed to delete transaction"):
        ledger.delete_transaction(session, user, transaction_id)
        return {"message": "Transaction deleted successfully"}
