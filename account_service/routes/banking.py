from datetime import timedelta

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlmodel import Session

from ..aggregator import get_aggregator
from ..auth import get_user
from ..categorization import Categorizer, get_categorizer
from ..db import get_session
from ..errors import ApiError, failure_message
from ..events import SYNC_COMPLETED, SYNC_REQUESTED, EventPublisher, get_publisher
from ..models import as_utc, utcnow
from ..schemas import (
    AccessTokenIn,
    AccountOut,
    PublicTokenIn,
    SyncTransactionsIn,
    TransactionOut,
    WebhookIn,
)
from ..sync import SyncAlreadyRunning, SyncService

router = APIRouter(prefix="/banking", tags=["banking"])
logger = structlog.get_logger(__name__)

DEFAULT_WINDOW_DAYS = 30
SYNC_WEBHOOK_CODES = ("DEFAULT_UPDATE", "INITIAL_UPDATE")


def get_sync_service(
    session: Session = Depends(get_session),
    aggregator=Depends(get_aggregator),
    categorizer: Categorizer = Depends(get_categorizer),
) -> SyncService:
    return SyncService(session, aggregator, categorizer)


@router.post("/create-link-token")
def create_link_token(user=Depends(get_user), aggregator=Depends(get_aggregator)):
    with failure_message("Failed to create link token"):
        return {"link_token": aggregator.create_link_token(user)}


@router.post("/exchange-public-token")
def exchange_public_token(body: PublicTokenIn, user=Depends(get_user), aggregator=Depends(get_aggregator)):
    with failure_message("Failed to exchange public token"):
        exchanged = aggregator.exchange_public_token(body.public_token)
        logger.info("public_token_exchanged", owner_id=user, item_id=exchanged.get("item_id"))
        return exchanged


@router.post("/sync-accounts")
def sync_accounts(body: AccessTokenIn, user=Depends(get_user), service: SyncService = Depends(get_sync_service)):
    with failure_message("Failed to sync accounts"):
        accounts = service.sync_accounts(user, body.access_token, body.item_id)
        return {
            "message": f"Synced {len(accounts)} accounts",
            "accounts": [AccountOut.model_validate(a).model_dump(by_alias=True) for a in accounts],
        }


@router.post("/sync-transactions")
def sync_transactions(body: SyncTransactionsIn, user=Depends(get_user),
                      service: SyncService = Depends(get_sync_service)):
    with failure_message("Failed to sync transactions"):
        end = as_utc(body.end_date) if body.end_date else utcnow()
        start = as_utc(body.start_date) if body.start_date else end - timedelta(days=DEFAULT_WINDOW_DAYS)
        created = service.sync_transactions(user, body.access_token, start, end)
        return {
            "message": f"Synced {len(created)} new transactions",
            "transactions": [TransactionOut.model_validate(t).model_dump(by_alias=True) for t in created],
        }


@router.post("/sync-user")
def sync_user(background: BackgroundTasks, user=Depends(get_user),
              service: SyncService = Depends(get_sync_service),
              publisher: EventPublisher = Depends(get_publisher)):
    with failure_message("Failed to sync accounts"):
        try:
            result = service.sync_user(user)
        except SyncAlreadyRunning:
            raise ApiError("Sync already in progress", status_code=409)
        background.add_task(publisher.publish, SYNC_COMPLETED, {"owner_id": user, **result})
        return {"message": "Sync completed successfully", **result}


@router.post("/webhook")
def webhook(body: WebhookIn, background: BackgroundTasks, publisher: EventPublisher = Depends(get_publisher)):
    """Aggregator callback; the sync itself runs in the sync worker."""
    logger.info("webhook_received", webhook_type=body.webhook_type, webhook_code=body.webhook_code,
                item_id=body.item_id)
    if body.webhook_type == "TRANSACTIONS" and body.webhook_code in SYNC_WEBHOOK_CODES and body.item_id:
        background.add_task(publisher.publish, SYNC_REQUESTED, {"item_id": body.item_id})
    return {"status": "received"}
