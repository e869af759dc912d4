"""Sync control API — run, start, stop and inspect the order sync engine."""

from fastapi import APIRouter, Depends

from ..dependencies import get_sync_engine
from ..schemas.responses import OkResponse
from ..schemas.sync import SyncResultOut, SyncRunResponse, SyncStartRequest, SyncStatusResponse
from ..sync_engine import OrderSyncEngine

router = APIRouter(tags=["sync"])


def _run_response(result) -> SyncRunResponse:
    if result is None:
        return SyncRunResponse(skipped=True)
    return SyncRunResponse(result=SyncResultOut(**result.as_dict()))


@router.post("/api/sync/run", response_model=SyncRunResponse)
async def run_sync(engine: OrderSyncEngine = Depends(get_sync_engine)):
    """One cycle now. skipped=true when a cycle was already running."""
    return _run_response(await engine.perform_sync_once())


@router.post("/api/sync/start", response_model=SyncRunResponse)
async def start_sync(
    body: SyncStartRequest | None = None,
    engine: OrderSyncEngine = Depends(get_sync_engine),
):
    interval = body.interval_minutes if body else None
    return _run_response(await engine.start_sync(interval))


@router.post("/api/sync/stop")
def stop_sync(engine: OrderSyncEngine = Depends(get_sync_engine)):
    return {"ok": True, "was_scheduled": engine.stop_sync()}


@router.get("/api/sync/status", response_model=SyncStatusResponse)
def sync_status(engine: OrderSyncEngine = Depends(get_sync_engine)):
    return SyncStatusResponse(**engine.get_sync_state(), stats=engine.get_sync_stats())


@router.post("/api/sync/reset", response_model=OkResponse)
def reset_sync(engine: OrderSyncEngine = Depends(get_sync_engine)):
    """Forget the sync window and clear an auth lockout."""
    engine.reset_sync_state()
    engine.reset_auth()
    return OkResponse()
