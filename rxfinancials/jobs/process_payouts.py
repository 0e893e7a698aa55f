"""
Scheduled payout processing.

Runs daily (``flask process-payouts``, e.g. from cron at 02:00 UTC):
1. Load pending payouts oldest-first.
2. Skip payouts still inside their business's hold period.
3. Transfer the rest through the payout provider.
4. Count unexpected errors against the payout's retry budget.
"""

from datetime import datetime, timezone

from flask import current_app

from rxfinancials.models import Payout
from rxfinancials.services import PayoutService, PlatformService, SimulatedPayoutProvider
from rxfinancials.services.ledger import PAYOUT_COMPLETED, PAYOUT_FAILED, PAYOUT_PENDING


def _as_utc(value):
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def process_due_payouts(now=None, provider=None):
    logger = current_app.logger
    now = now or datetime.now(timezone.utc)
    provider = provider or SimulatedPayoutProvider.from_config(current_app.config)
    max_retries = int(current_app.config["PAYOUT_MAX_RETRIES"])

    pending = (
        Payout.query.filter(Payout.status == PAYOUT_PENDING, Payout.deleted_at.is_(None))
        .order_by(Payout.requested_at.asc(), Payout.id.asc())
        .all()
    )
    logger.info("[process-payouts] Found %s pending payouts", len(pending))

    counts = {"processed": 0, "failed": 0, "skipped": 0}
    for payout in pending:
        payout_id = payout.id
        hold_hours = PlatformService.payout_hold_hours(payout.business_id)
        held_hours = (now - _as_utc(payout.requested_at)).total_seconds() / 3600
        if held_hours < hold_hours:
            logger.debug(
                "[process-payouts] Payout %s within hold period (%.1f / %s hours), skipping",
                payout_id,
                held_hours,
                hold_hours,
            )
            counts["skipped"] += 1
            continue

        try:
            result = PayoutService.process_payout(payout_id, provider=provider, actor="process-payouts")
        except Exception as exc:
            logger.exception("[process-payouts] Error processing payout %s", payout_id)
            result = PayoutService.record_processing_error(payout_id, str(exc), max_retries)

        if result.status == PAYOUT_COMPLETED:
            counts["processed"] += 1
        elif result.status == PAYOUT_FAILED:
            counts["failed"] += 1

    logger.info(
        "[process-payouts] Job completed. Processed: %s, Failed: %s, Skipped (hold period): %s",
        counts["processed"],
        counts["failed"],
        counts["skipped"],
    )
    return counts
