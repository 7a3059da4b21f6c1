"""
Settlement reconciler.

settle() commits the money movement first and appends the settlement events
afterwards. This worker finds settled escrows whose events never made it into the
ledger and appends whatever is missing.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone

from coopmarket.core.config import BATCH_SIZE, LOG_FORMAT, POLLING_INTERVAL, RECONCILE_GRACE_SEC
from coopmarket.core.db import close_db, init_db
from coopmarket.models.escrow import EscrowRecord, EscrowStatus
from coopmarket.services.settlement import emit_settlement_events

log = logging.getLogger(__name__)


async def reconcile_unsynced_settlements(
    grace_seconds: int = RECONCILE_GRACE_SEC, batch_size: int = BATCH_SIZE
) -> int:
    """
    Repairs one batch of settled escrows still flagged ``ledger_synced=False``.
    The grace period keeps the reconciler away from settlements whose own
    post-commit emission is still running. Returns the number of escrows repaired.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=grace_seconds)
    escrows = await (
        EscrowRecord.filter(status=EscrowStatus.SETTLED, ledger_synced=False, settled_at__lte=cutoff)
        .order_by("settled_at")
        .limit(batch_size)
    )
    if not escrows:
        return 0

    repaired = 0
    for escrow in escrows:
        try:
            appended = await emit_settlement_events(escrow.id, skip_existing=True)
        except Exception:
            # Left unsynced; picked up again on the next poll.
            log.exception(f"Could not reconcile settlement events for escrow {escrow.id}")
            continue

        repaired += 1
        log.warning(f"Reconciled settlement for order {escrow.order_id}: {appended} missing events appended")

    return repaired


async def start_settlement_reconciler():
    """Main loop for the reconciler service."""
    await init_db()
    log.info("--- Settlement Reconciler Started ---")

    try:
        while True:
            try:
                await reconcile_unsynced_settlements()
            except Exception as e:
                log.error(f"Reconciler encountered a DB error: {e}")

            await asyncio.sleep(POLLING_INTERVAL)
    finally:
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    try:
        asyncio.run(start_settlement_reconciler())
    except KeyboardInterrupt:
        log.info("Settlement reconciler stopped.")
