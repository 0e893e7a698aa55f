from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError

from rxfinancials.errors import (
    AMOUNT_EXCEEDS_AVAILABLE,
    AMOUNT_MISMATCH,
    EARNINGS_VALIDATION_FAILED,
    INVALID_TRANSITION,
    NO_AVAILABLE_BALANCE,
    NOT_FOUND,
    AppError,
)
from rxfinancials.extensions import db
from rxfinancials.models import EarningEntry, Payout
from rxfinancials.services.audit_service import AuditService
from rxfinancials.services.earnings_service import EarningsService
from rxfinancials.services.fees import EarningAmounts, split_amounts
from rxfinancials.services.inputs import EarningCriteria, PayoutCriteria
from rxfinancials.services.ledger import (
    AVAILABLE,
    PAID,
    PAID_OUT,
    PAYOUT_COMPLETED,
    PAYOUT_FAILED,
    PAYOUT_PENDING,
    PAYOUT_PROCESSING,
    transition_earning,
    transition_payout,
)
from rxfinancials.services.payout_provider import PayoutProviderError, SimulatedPayoutProvider


class PayoutService:
    @staticmethod
    def get_payout(payout_id, include_deleted=False):
        payout = db.session.get(Payout, payout_id)
        if not payout or (payout.is_deleted and not include_deleted):
            raise AppError(f"Payout {payout_id} not found.", 404, NOT_FOUND)
        return payout

    @staticmethod
    def list_payouts(criteria=None, page=None, per_page=20):
        criteria = criteria or PayoutCriteria()
        query = Payout.query
        if not criteria.include_deleted:
            query = query.filter(Payout.deleted_at.is_(None))
        if criteria.business_id:
            query = query.filter(Payout.business_id == criteria.business_id)
        if criteria.status:
            query = query.filter(Payout.status == criteria.status)
        query = query.order_by(Payout.created_at.desc(), Payout.id.desc())
        if page is None:
            return query.all()
        return query.paginate(page=page, per_page=per_page, error_out=False)

    @staticmethod
    def find_by_idempotency_key(business_id, idempotency_key):
        if not idempotency_key:
            return None
        return Payout.query.filter_by(business_id=business_id, idempotency_key=idempotency_key).first()

    @staticmethod
    def _collect_violations(business_id, earning_ids, lock=False):
        errors = []
        duplicates = sorted({earning_id for earning_id in earning_ids if earning_ids.count(earning_id) > 1})
        if duplicates:
            errors.append(f"Duplicate earning ids in request: {', '.join(str(i) for i in duplicates)}")

        unique_ids = list(dict.fromkeys(earning_ids))
        query = EarningEntry.query.filter(EarningEntry.id.in_(unique_ids))
        if lock:
            query = query.with_for_update()
        by_id = {earning.id: earning for earning in query.all()}

        valid = []
        for earning_id in unique_ids:
            earning = by_id.get(earning_id)
            if earning is None or earning.is_deleted:
                errors.append(f"Earning {earning_id} not found")
            elif earning.business_id != business_id:
                errors.append(
                    f"Earning {earning_id} does not belong to business {business_id} "
                    f"(belongs to: {earning.business_id})"
                )
            elif earning.status != AVAILABLE:
                errors.append(f"Earning {earning_id} is not available for payout (current status: {earning.status})")
            elif earning.payout_id is not None:
                errors.append(f"Earning {earning_id} is already linked to payout {earning.payout_id}")
            elif int(earning.net_amount) <= 0:
                errors.append(f"Earning {earning_id} has invalid net amount: {earning.net_amount}")
            else:
                valid.append(earning)
        return errors, valid

    @staticmethod
    def validate_earnings_for_payout(business_id, earning_ids):
        """Dry-run of explicit selection; reports every violation without side effects."""
        if not business_id:
            return {"valid": False, "errors": ["Business ID is required"], "earnings": [], "total_amount": 0}
        if not earning_ids:
            return {
                "valid": False,
                "errors": ["At least one earning ID is required"],
                "earnings": [],
                "total_amount": 0,
            }
        errors, valid = PayoutService._collect_violations(business_id, list(earning_ids))
        return {
            "valid": not errors and bool(valid),
            "errors": errors,
            "earnings": valid,
            "total_amount": sum(int(e.net_amount) for e in valid),
        }

    @staticmethod
    def _select_explicit(request):
        errors, selected = PayoutService._collect_violations(
            request.business_id, list(request.earning_entry_ids), lock=True
        )
        if errors:
            raise AppError(
                f"Payout validation failed for {len(errors)} earning(s).",
                400,
                EARNINGS_VALIDATION_FAILED,
                errors,
            )
        total = sum(int(e.net_amount) for e in selected)
        if request.amount is not None and total != request.amount:
            raise AppError(
                f"Selected earnings total {total} does not match requested amount {request.amount}.",
                400,
                AMOUNT_MISMATCH,
            )
        return selected

    @staticmethod
    def _select_by_amount(request):
        candidates = (
            EarningsService.query(EarningCriteria(business_id=request.business_id, status=AVAILABLE))
            .filter(EarningEntry.payout_id.is_(None), EarningEntry.net_amount > 0)
            .order_by(EarningEntry.created_at.asc(), EarningEntry.id.asc())
            .with_for_update()
            .all()
        )
        available_total = sum(int(e.net_amount) for e in candidates)
        requested = available_total if request.amount is None else request.amount

        if requested <= 0:
            raise AppError("No available balance to pay out.", 400, NO_AVAILABLE_BALANCE)
        if requested > available_total:
            raise AppError(
                f"Requested amount {requested} exceeds available balance {available_total}.",
                400,
                AMOUNT_EXCEEDS_AVAILABLE,
            )

        selected = []
        running = 0
        for earning in candidates:
            needed = requested - running
            if needed <= 0:
                break
            if int(earning.net_amount) <= needed:
                selected.append(earning)
                running += int(earning.net_amount)
            else:
                selected.append(PayoutService.split_earning(earning, needed, actor=request.requested_by))
                running += needed
        return selected

    @staticmethod
    def split_earning(earning, take, actor=None):
        """Carve ``take`` net out of an available earning.

        The existing row keeps the remainder; the returned new row holds the
        part and is tagged with ``split_from``. Does not commit.
        """
        remainder, part = split_amounts(EarningAmounts.of(earning), take)

        piece = EarningEntry(
            business_id=earning.business_id,
            order_id=earning.order_id,
            line_item_id=earning.line_item_id,
            consultation_id=earning.consultation_id,
            type=earning.type,
            description=earning.description,
            gross_amount=part.gross,
            platform_fee=part.platform_fee,
            payment_processing_fee=part.processing_fee,
            net_amount=part.net,
            clinician_fee=part.clinician_fee,
            status=AVAILABLE,
            available_at=earning.available_at,
            meta={**(earning.meta or {}), "split_from": earning.id},
        )

        earning.gross_amount = remainder.gross
        earning.platform_fee = remainder.platform_fee
        earning.payment_processing_fee = remainder.processing_fee
        earning.net_amount = remainder.net
        earning.clinician_fee = remainder.clinician_fee

        db.session.add(piece)
        db.session.flush()
        AuditService.record(
            "earning",
            earning.id,
            "split",
            actor=actor,
            changes={"split_entry_id": piece.id, "taken": take, "remaining_net": remainder.net},
        )
        current_app.logger.info(
            "Split earning %s: %s moved to earning %s, %s remains", earning.id, take, piece.id, remainder.net
        )
        return piece

    @staticmethod
    def _create_record(request, selected):
        now = datetime.now(timezone.utc)
        payout = Payout(
            business_id=request.business_id,
            total_amount=sum(int(e.gross_amount) for e in selected),
            fee_amount=sum(int(e.platform_fee) + int(e.payment_processing_fee) for e in selected),
            net_amount=sum(int(e.net_amount) for e in selected),
            status=PAYOUT_PENDING,
            method=request.method,
            destination_account=request.destination_account,
            requested_at=now,
            idempotency_key=request.idempotency_key,
            earning_entries=[e.id for e in selected],
            meta={
                "requested_by": request.requested_by,
                "requested_amount": request.amount,
                "allocation": "explicit" if request.is_explicit else "amount",
                "idempotency_key": request.idempotency_key,
            },
        )
        db.session.add(payout)
        db.session.flush()

        for earning in selected:
            transition_earning(earning, PAID_OUT, payout_id=payout.id, now=now)

        AuditService.record(
            "payout",
            payout.id,
            "create",
            actor=request.requested_by,
            changes={"earning_ids": payout.earning_entries, "net_amount": payout.net_amount},
        )
        return payout

    @staticmethod
    def create_payout(request):
        """Allocate earnings to a new payout.

        Returns ``(payout, created)``; ``created`` is False when an existing
        payout was returned for the request's idempotency key. Selection,
        splitting and locking happen in one transaction with the candidate
        rows locked, so a failure leaves no partial effect.
        """
        existing = PayoutService.find_by_idempotency_key(request.business_id, request.idempotency_key)
        if existing:
            return existing, False

        try:
            if request.is_explicit:
                selected = PayoutService._select_explicit(request)
            else:
                selected = PayoutService._select_by_amount(request)
            payout = PayoutService._create_record(request, selected)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = PayoutService.find_by_idempotency_key(request.business_id, request.idempotency_key)
            if existing:
                current_app.logger.info(
                    "Concurrent payout request for business %s resolved to payout %s",
                    request.business_id,
                    existing.id,
                )
                return existing, False
            raise
        except AppError:
            db.session.rollback()
            raise

        current_app.logger.info(
            "Payout %s created for business %s: %s earnings, net %s",
            payout.id,
            payout.business_id,
            len(selected),
            payout.net_amount,
        )
        return payout, True

    @staticmethod
    def process_payout(payout_id, provider=None, actor=None):
        payout = PayoutService.get_payout(payout_id)
        transition_payout(payout, PAYOUT_PROCESSING)
        payout.processed_at = datetime.now(timezone.utc)
        db.session.commit()

        provider = provider or SimulatedPayoutProvider.from_config(current_app.config)
        try:
            result = provider.transfer(payout)
        except PayoutProviderError as exc:
            return PayoutService.fail_payout(payout.id, str(exc), actor=actor)

        now = datetime.now(timezone.utc)
        earnings = EarningsService.query(EarningCriteria(payout_id=payout.id, status=PAID_OUT)).all()
        for earning in earnings:
            transition_earning(earning, PAID, now=now)

        transition_payout(payout, PAYOUT_COMPLETED)
        payout.completed_at = now
        payout.transaction_id = result.transaction_id
        payout.failure_reason = None
        AuditService.record(
            "payout",
            payout.id,
            "complete",
            actor=actor,
            changes={"transaction_id": result.transaction_id, "earning_ids": [e.id for e in earnings]},
        )
        db.session.commit()
        current_app.logger.info("Payout %s completed (transaction %s)", payout.id, result.transaction_id)
        return payout

    @staticmethod
    def fail_payout(payout_id, reason, actor=None):
        """Mark a processing payout failed. Its earnings stay locked until it is retried or cancelled."""
        payout = PayoutService.get_payout(payout_id)
        transition_payout(payout, PAYOUT_FAILED)
        payout.failure_reason = reason
        AuditService.record("payout", payout.id, "fail", actor=actor, changes={"reason": reason})
        db.session.commit()
        current_app.logger.warning("Payout %s failed: %s", payout.id, reason)
        return payout

    @staticmethod
    def retry_payout(payout_id, actor=None):
        payout = PayoutService.get_payout(payout_id)
        if (payout.meta or {}).get("cancelled"):
            raise AppError(f"Payout {payout_id} was cancelled and cannot be retried.", 409, INVALID_TRANSITION)
        transition_payout(payout, PAYOUT_PENDING)
        payout.failure_reason = None
        AuditService.record("payout", payout.id, "retry", actor=actor)
        db.session.commit()
        return payout

    @staticmethod
    def cancel_payout(payout_id, reason=None, actor=None):
        payout = PayoutService.get_payout(payout_id)
        if payout.status != PAYOUT_PENDING:
            raise AppError(
                f"Payout {payout_id} cannot be cancelled (current status: {payout.status}).",
                409,
                INVALID_TRANSITION,
            )

        earnings = EarningsService.query(EarningCriteria(payout_id=payout.id, include_deleted=True)).all()
        for earning in earnings:
            transition_earning(earning, AVAILABLE)

        transition_payout(payout, PAYOUT_FAILED)
        payout.failure_reason = reason or "Cancelled by user"
        payout.meta = {**(payout.meta or {}), "cancelled": True}
        AuditService.record(
            "payout",
            payout.id,
            "cancel",
            actor=actor,
            changes={"released_earning_ids": [e.id for e in earnings], "reason": payout.failure_reason},
        )
        db.session.commit()
        current_app.logger.info("Payout %s cancelled; released %s earnings", payout.id, len(earnings))
        return payout

    @staticmethod
    def record_processing_error(payout_id, reason, max_retries):
        """Count a failed processing attempt: back to pending, or failed once retries run out."""
        db.session.rollback()
        payout = PayoutService.get_payout(payout_id)
        meta = dict(payout.meta or {})
        meta["retry_count"] = int(meta.get("retry_count", 0)) + 1
        # Bypasses the transition table: the payout may be stuck in either pending or processing.
        payout.status = PAYOUT_FAILED if meta["retry_count"] >= max_retries else PAYOUT_PENDING
        payout.failure_reason = reason
        payout.meta = meta
        AuditService.record(
            "payout",
            payout.id,
            "processing_error",
            changes={"reason": reason, "retry_count": meta["retry_count"], "status": payout.status},
        )
        db.session.commit()
        return payout

    @staticmethod
    def delete_payout(payout_id, actor=None):
        payout = PayoutService.get_payout(payout_id)
        if payout.status in {PAYOUT_PENDING, PAYOUT_PROCESSING}:
            raise AppError(f"Payout {payout_id} is still in flight and cannot be deleted.", 409)
        payout.deleted_at = datetime.now(timezone.utc)
        AuditService.record("payout", payout.id, "delete", actor=actor)
        db.session.commit()
        return payout

    @staticmethod
    def restore_payout(payout_id, actor=None):
        payout = PayoutService.get_payout(payout_id, include_deleted=True)
        payout.deleted_at = None
        AuditService.record("payout", payout.id, "restore", actor=actor)
        db.session.commit()
        return payout
