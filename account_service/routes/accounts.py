from collections import defaultdict
from decimal import Decimal

import structlog
from fastapi import APIRouter, Depends
from sqlmodel import Session, func, select

from ..auth import get_user
from ..db import get_session
from ..errors import AccountNotFound, failure_message
from ..ledger import to_cents
from ..models import Account, Transaction, utcnow
from ..schemas import (
    AccountDetail,
    AccountEnvelope,
    AccountIn,
    AccountList,
    AccountOut,
    AccountPatch,
    AccountStats,
    TransactionOut,
)

router = APIRouter(prefix="/accounts", tags=["accounts"])
logger = structlog.get_logger(__name__)

RECENT_LIMIT = 10


def _active_accounts(session: Session, user: str) -> list[Account]:
    return list(
        session.exec(
            select(Account)
            .where(Account.owner_id == user, Account.is_active == True)  # noqa: E712
            .order_by(Account.created_at.desc(), Account.id.desc())
        ).all()
    )


@router.get("", response_model=AccountList)
def list_accounts(user=Depends(get_user), session: Session = Depends(get_session)):
    with failure_message("Failed to fetch accounts"):
        accounts = _active_accounts(session, user)
        return AccountList(
            accounts=[AccountOut.model_validate(a) for a in accounts],
            total_balance=float(sum((Decimal(a.balance) for a in accounts), Decimal(0))),
            count=len(accounts),
        )


@router.post("", response_model=AccountEnvelope, status_code=201)
def create_account(body: AccountIn, user=Depends(get_user), session: Session = Depends(get_session)):
    with failure_message("Failed to create account"):
        opening = to_cents(body.balance)
        acc = Account(
            owner_id=user,
            name=body.name,
            type=body.type,
            opening_balance=opening,
            balance=opening,
            currency=body.currency,
            description=body.description,
        )
        if body.color:
            acc.color = body.color
        if body.icon:
            acc.icon = body.icon
        session.add(acc)
        session.commit()
        session.refresh(acc)
        logger.info("account_created", account_id=acc.id, owner_id=user)
        return AccountEnvelope(message="Account created successfully", account=AccountOut.model_validate(acc))


@router.get("/stats/overview", response_model=AccountStats)
def account_stats(user=Depends(get_user), session: Session = Depends(get_session)):
    with failure_message("Failed to fetch account statistics"):
        accounts = _active_accounts(session, user)
        counts: dict[str, int] = defaultdict(int)
        balances: dict[str, Decimal] = defaultdict(Decimal)
        for a in accounts:
            counts[a.type.value] += 1
            balances[a.type.value] += Decimal(a.balance)
        return AccountStats(
            total_accounts=len(accounts),
            total_balance=float(sum(balances.values(), Decimal(0))),
            accounts_by_type=dict(counts),
            balance_by_type={k: float(v) for k, v in balances.items()},
        )


@router.get("/{account_id}", response_model=AccountDetail)
def get_account(account_id: int, user=Depends(get_user), session: Session = Depends(get_session)):
    with failure_message("Failed to fetch account"):
        acc = session.exec(
            select(Account).where(
                Account.id == account_id, Account.owner_id == user, Account.is_active == True  # noqa: E712
            )
        ).first()
        if not acc:
            raise AccountNotFound(account_id)
        recent = session.exec(
            select(Transaction)
            .where(Transaction.account_id == acc.id, Transaction.owner_id == user)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(RECENT_LIMIT)
        ).all()
        return AccountDetail(
            account=AccountOut.model_validate(acc),
            recent_transactions=[TransactionOut.model_validate(t) for t in recent],
        )


@router.put("/{account_id}", response_model=AccountEnvelope)
def update_account(account_id: int, body: AccountPatch, user=Depends(get_user),
                   session: Session = Depends(get_session)):
    with failure_message("Failed to update account"):
        acc = session.exec(
            select(Account).where(
                Account.id == account_id, Account.owner_id == user, Account.is_active == True  # noqa: E712
            )
        ).first()
        if not acc:
            raise AccountNotFound(account_id)
        # balance fields are owned by the ledger
        for field, value in body.model_dump(exclude_unset=True).items():
            if value is None and field != "description":
                continue
            setattr(acc, field, value)
        acc.updated_at = utcnow()
        session.add(acc)
        session.commit()
        session.refresh(acc)
        return AccountEnvelope(message="Account updated successfully", account=AccountOut.model_validate(acc))


@router.delete("/{account_id}")
def delete_account(account_id: int, user=Depends(get_user), session: Session = Depends(get_session)):
    with failure_message("Failed to delete account"):
        acc = session.exec(select(Account).where(Account.id == account_id, Account.owner_id == user)).first()
        if not acc:
            raise AccountNotFound(account_id)
        tx_count = session.exec(
            select(func.count()).select_from(Transaction).where(Transaction.account_id == acc.id)
        ).one()
        if tx_count > 0:
            acc.is_active = False
            acc.updated_at = utcnow()
            session.add(acc)
            logger.info("account_deactivated", account_id=acc.id, transactions=tx_count)
        else:
            session.delete(acc)
            logger.info("account_deleted", account_id=account_id)
        session.commit()
        return {"message": "Account deleted successfully"}
