"""Incremental transaction sync — SteVe charging sessions into the local store.

High-water mark: the latest processed ``stopTimestamp`` (T0) is persisted.
Each run fetches STOPPED sessions with ``stopTimestamp`` after T0 (minus an
optional slack), then:

1. validates the whole batch, any malformed record aborts the run,
2. dedupes by transaction id (last seen wins),
3. upserts every record and advances T0 in one transaction,
4. invoices every stored session that has an owner but no invoice yet,
   one by one, so earlier billing failures are retried on later runs.

Sessions that end at or before T0 but arrive late are not fetched again
unless ``SYNC_SLACK_SECONDS`` covers the delay. Re-fetching is harmless:
rows whose stored stop time already matches are skipped.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

import structlog
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from app.core.exceptions import AppError, ErrorCodes, ValidationException
from app.core.time_utils import as_utc, utc_midnight, utc_now
from app.domain.models.transaction import ChargingTransaction
from app.domain.models.user import User
from app.domain.schemas.odoo import OdooInvoiceCreated
from app.domain.schemas.steve import SteveTransaction
from app.domain.schemas.sync import SyncMode, SyncResult
from app.infrastructure.database import transaction
from app.infrastructure.odoo_api import OdooAPIClient
from app.infrastructure.repositories.transaction_repository import SQLAlchemyTransactionRepository
from app.infrastructure.repositories.user_repository import SQLAlchemyUserRepository
from app.infrastructure.steve_api import SteveAPIClient

logger = structlog.get_logger(__name__)

INVOICE_BATCH_SIZE = 100

_stop_timestamp = TypeAdapter(Optional[datetime])


def get_watermark(db: Session) -> Optional[datetime]:
    iteration = SQLAlchemyTransactionRepository(db, ChargingTransaction).get_watermark()
    return as_utc(iteration.last_stop_timestamp) if iteration else None


def _stopped_after(item: dict, since: datetime) -> bool:
    """False only for records that provably stopped at or before ``since``."""
    if not isinstance(item, dict):
        return True
    try:
        stop = _stop_timestamp.validate_python(item.get("stopTimestamp"))
    except ValidationError:
        return True
    return stop is None or as_utc(stop) > since


async def fetch_since(steve: SteveAPIClient, since: Optional[datetime] = None) -> list[dict]:
    """STOPPED sessions with stopTimestamp after ``since``; everything when None.

    SteVe treats ``from`` as inclusive, so sessions stopped exactly at
    ``since`` come back and are dropped here. Unparseable records are kept
    for ``validate_batch`` to reject.
    """
    if since is None:
        return await steve.get_transactions()
    raw = await steve.get_transactions(since=since, until=utc_now())
    return [item for item in raw if _stopped_after(item, since)]


def validate_batch(raw: Iterable[dict]) -> list[SteveTransaction]:
    """Validate every record; one bad record rejects the whole batch."""
    records = []
    for index, item in enumerate(raw):
        try:
            records.append(SteveTransaction.model_validate(item))
        except ValidationError as e:
            tx_id = item.get("id") if isinstance(item, dict) else None
            raise ValidationException(
                ErrorCodes.VALIDATION.INVALID_FORMAT,
                f"Invalid transaction format at position {index}",
                details={
                    "transaction_id": tx_id,
                    "errors": e.errors(include_url=False, include_context=False),
                },
            ) from e
    return records


def dedupe(records: Iterable[SteveTransaction]) -> list[SteveTransaction]:
    """One record per transaction id; the last one seen wins."""
    unique: dict[int, SteveTransaction] = {}
    for record in records:
        unique[record.id] = record
    return list(unique.values())


def max_stop_timestamp(records: Iterable[SteveTransaction]) -> Optional[datetime]:
    stops = [r.stopTimestamp for r in records if r.stopTimestamp is not None]
    return max(stops) if stops else None


def _is_final(stored: ChargingTransaction, record: SteveTransaction) -> bool:
    return (
        stored.stop_timestamp is not None
        and record.stopTimestamp is not None
        and as_utc(stored.stop_timestamp) == record.stopTimestamp
    )


def _transaction_values(record: SteveTransaction, user_id: Optional[int]) -> dict:
    return {
        "tx_steve_id": record.id,
        "connector_id": record.connectorId,
        "chargebox_pk": record.chargeBoxPk,
        "chargebox_id": record.chargeBoxId,
        "ocpp_tag_pk": record.ocppTagPk,
        "ocpp_id_tag": record.ocppIdTag,
        "start_timestamp": record.startTimestamp,
        "stop_timestamp": record.stopTimestamp,
        "start_value": record.startValue,
        "stop_value": record.stopValue,
        "delivered_energy_wh": record.delivered_energy_wh,
        "stop_reason": record.stopReason,
        "stop_event_actor": record.stopEventActor,
        "user_id": user_id,
    }


def record_transactions(
    db: Session,
    records: list[SteveTransaction],
    previous: Optional[datetime],
    result: SyncResult,
) -> Optional[datetime]:
    """Upsert ``records`` and advance the watermark in one transaction.

    Returns the watermark now in effect.
    """
    tx_repo = SQLAlchemyTransactionRepository(db, ChargingTransaction)
    user_repo = SQLAlchemyUserRepository(db, User)

    with transaction(db, "record transactions"):
        for record in records:
            stored = tx_repo.get_by_steve_id(record.id)
            if stored is not None and _is_final(stored, record):
                result.skipped += 1
                continue

            owner = user_repo.find_by_tag(record.ocppIdTag, record.ocppTagPk)
            if owner is None:
                result.unresolved += 1
                logger.warning(
                    "No user for transaction",
                    tx_steve_id=record.id,
                    ocpp_id_tag=record.ocppIdTag,
                    ocpp_tag_pk=record.ocppTagPk,
                )
            values = _transaction_values(record, owner.user_id if owner else None)

            if stored is None:
                tx_repo.create(values)
            else:
                # invoice_ref is kept; it belongs to the local side
                tx_repo.update(stored, values)
            result.persisted += 1

        candidate = max_stop_timestamp(records)
        watermark = previous
        if candidate is not None and (previous is None or candidate > previous):
            watermark = candidate
        if watermark is not None:
            tx_repo.set_watermark(watermark)

    return watermark


def _invoice_payload(tx: ChargingTransaction, user: User) -> dict:
    return {
        "partner_id": user.odoo_partner_id,
        "user_id": user.odoo_user_id,
        "transaction_id": tx.tx_steve_id,
        "start_timestamp": as_utc(tx.start_timestamp).isoformat(),
        "stop_timestamp": as_utc(tx.stop_timestamp).isoformat() if tx.stop_timestamp else None,
        "energy_wh": str(tx.delivered_energy_wh) if tx.delivered_energy_wh is not None else None,
    }


async def invoice_transaction(db: Session, odoo: OdooAPIClient, tx: ChargingTransaction) -> str:
    """Create the Odoo invoice for one session and store its reference."""
    user = SQLAlchemyUserRepository(db, User).get_by_id(tx.user_id)
    if user is None or user.odoo_partner_id is None:
        raise ValidationException(
            ErrorCodes.USER.ODOO_NOT_FOUND,
            "Transaction owner has no billing account",
            details={"tx_steve_id": tx.tx_steve_id, "user_id": tx.user_id},
        )

    response = await odoo.create_invoice(_invoice_payload(tx, user))
    try:
        invoice_ref = str(OdooInvoiceCreated.model_validate(response).invoice_id)
    except ValidationError as e:
        raise ValidationException(
            ErrorCodes.VALIDATION.INVALID_FORMAT,
            "Malformed invoice response from Odoo",
            details={"tx_steve_id": tx.tx_steve_id},
        ) from e

    with transaction(db, "store invoice reference"):
        SQLAlchemyTransactionRepository(db, ChargingTransaction).update(tx, {"invoice_ref": invoice_ref})
    return invoice_ref


async def invoice_pending(
    db: Session,
    odoo: OdooAPIClient,
    result: SyncResult,
    limit: int = INVOICE_BATCH_SIZE,
) -> None:
    """Invoice stored sessions that have an owner and no invoice yet.

    Not limited to the current batch: a session whose invoice failed stays
    pending after the watermark has moved past it. Failures are isolated per
    session: logged, counted and left for the next run.
    """
    pending = SQLAlchemyTransactionRepository(db, ChargingTransaction).list_uninvoiced(limit)
    for tx in pending:
        tx_steve_id = tx.tx_steve_id
        try:
            invoice_ref = await invoice_transaction(db, odoo, tx)
        except AppError as e:
            result.invoice_failures += 1
            logger.error(
                "Invoice creation failed",
                tx_steve_id=tx_steve_id,
                code=e.code,
                msg=e.message,
                retryable=e.retryable,
            )
            continue
        result.invoiced += 1
        logger.info("Transaction invoiced", tx_steve_id=tx_steve_id, invoice_ref=invoice_ref)


async def process_batch(
    db: Session,
    odoo: OdooAPIClient,
    raw: list[dict],
    previous: Optional[datetime],
) -> SyncResult:
    """Validate, dedupe, persist and invoice one fetched batch."""
    result = SyncResult(fetched=len(raw), high_water_mark=previous)
    records = dedupe(validate_batch(raw))
    result.unique = len(records)

    result.high_water_mark = record_transactions(db, records, previous, result)
    await invoice_pending(db, odoo, result)
    return result


async def _run(
    db: Session,
    steve: SteveAPIClient,
    odoo: OdooAPIClient,
    since: Optional[datetime],
    previous: Optional[datetime],
) -> SyncResult:
    raw = await fetch_since(steve, since)
    result = await process_batch(db, odoo, raw, previous)
    logger.info("Transaction sync finished", **result.model_dump(mode="json"))
    return result


async def run_incremental(
    db: Session,
    steve: SteveAPIClient,
    odoo: OdooAPIClient,
    slack: timedelta = timedelta(0),
) -> SyncResult:
    """Fetch and process everything stopped since the stored watermark."""
    previous = get_watermark(db)
    since = previous - slack if previous is not None else None
    return await _run(db, steve, odoo, since, previous)


async def run_full(db: Session, steve: SteveAPIClient, odoo: OdooAPIClient) -> SyncResult:
    """Fetch and process all stopped sessions regardless of the watermark."""
    return await _run(db, steve, odoo, None, get_watermark(db))


async def run_today(db: Session, steve: SteveAPIClient, odoo: OdooAPIClient) -> SyncResult:
    """Fetch and process every session stopped since UTC midnight."""
    return await _run(db, steve, odoo, utc_midnight(), get_watermark(db))


async def run_sync(
    db: Session,
    steve: SteveAPIClient,
    odoo: OdooAPIClient,
    mode: SyncMode = SyncMode.INCREMENTAL,
    slack: timedelta = timedelta(0),
) -> SyncResult:
    if mode == SyncMode.FULL:
        return await run_full(db, steve, odoo)
    if mode == SyncMode.TODAY:
        return await run_today(db, steve, odoo)
    return await run_incremental(db, steve, odoo, slack)
