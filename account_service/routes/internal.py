from fastapi import APIRouter, BackgroundTasks, Depends

from ..auth import require_internal
from ..errors import failure_message
from ..events import SYNC_COMPLETED, EventPublisher, get_publisher
from ..schemas import SyncItemIn
from ..sync import SyncAlreadyRunning, SyncService
from .banking import get_sync_service

# Called by the sync worker, protected by INTERNAL_TOKEN
router = APIRouter(prefix="/internal", tags=["internal"], dependencies=[Depends(require_internal)])


@router.post("/sync-item")
def sync_item(body: SyncItemIn, background: BackgroundTasks,
              service: SyncService = Depends(get_sync_service),
              publisher: EventPublisher = Depends(get_publisher)):
    with failure_message("Failed to sync item"):
        try:
            result = service.sync_item(body.item_id)
        except SyncAlreadyRunning:
            return {"status": "already_running", "item_id": body.item_id}
        background.add_task(publisher.publish, SYNC_COMPLETED, {"item_id": body.item_id, **result})
        return {"status": "synced", "item_id": body.item_id, **result}
