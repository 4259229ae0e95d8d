"""Sync routes — manual transaction sync trigger and watermark inspection."""

from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.config import get_settings
from app.infrastructure.database import get_db
from app.infrastructure.odoo_api import OdooAPIClient
from app.infrastructure.steve_api import SteveAPIClient
from app.infrastructure.repositories.transaction_repository import SQLAlchemyTransactionRepository
from app.application.services.transaction_sync_service import run_sync
from app.domain.models.transaction import ChargingTransaction
from app.domain.schemas.sync import SyncMode, SyncResult, WatermarkRead
from app.interfaces.api.deps import require_internal_api_key
from app.interfaces.deps import get_odoo_client, get_steve_client

router = APIRouter(
    prefix="/api/sync",
    tags=["Sync"],
    dependencies=[Depends(require_internal_api_key)],
)


@router.post("/run", response_model=SyncResult)
async def run(
    mode: SyncMode = Query(SyncMode.INCREMENTAL),
    db: Session = Depends(get_db),
    steve: SteveAPIClient = Depends(get_steve_client),
    odoo: OdooAPIClient = Depends(get_odoo_client),
):
    slack = timedelta(seconds=get_settings().SYNC_SLACK_SECONDS)
    return await run_sync(db, steve, odoo, mode=mode, slack=slack)


@router.get("/watermark", response_model=WatermarkRead)
def watermark(db: Session = Depends(get_db)):
    iteration = SQLAlchemyTransactionRepository(db, ChargingTransaction).get_watermark()
    if iteration is None:
        return WatermarkRead()
    return WatermarkRead(
        last_stop_timestamp=iteration.last_stop_timestamp,
        iterated_at=iteration.iterated_at,
    )
