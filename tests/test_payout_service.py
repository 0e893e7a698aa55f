from datetime import datetime, timedelta, timezone

import pytest

from rxfinancials.errors import (
    AMOUNT_EXCEEDS_AVAILABLE,
    AMOUNT_MISMATCH,
    EARNINGS_VALIDATION_FAILED,
    INVALID_TRANSITION,
    NO_AVAILABLE_BALANCE,
    UNSAFE_SPLIT,
    AppError,
)
from rxfinancials.extensions import db
from rxfinancials.models import AuditLog, EarningEntry, Payout
from rxfinancials.services import PayoutProviderError, PayoutService
from rxfinancials.services.inputs import PayoutRequest

T0 = datetime(2026, 3, 1, tzinfo=timezone.utc)


class FailingProvider:
    def transfer(self, payout):
        raise PayoutProviderError("bank rejected transfer")


def _refresh(model, pk):
    db.session.expire_all()
    return db.session.get(model, pk)


class TestExplicitAllocation:
    def test_exact_amount_succeeds(self, app, make_earning):
        e1 = make_earning(net=8750)
        e2 = make_earning(net=5000)

        payout, created = PayoutService.create_payout(
            PayoutRequest(business_id="biz_1", amount=13750, earning_entry_ids=[e1.id, e2.id])
        )

        assert created is True
        assert payout.status == "pending"
        assert payout.net_amount == 13750
        assert sorted(payout.earning_entries) == sorted([e1.id, e2.id])
        for earning_id in (e1.id, e2.id):
            earning = _refresh(EarningEntry, earning_id)
            assert earning.status == "paid_out"
            assert earning.payout_id == payout.id

    def test_amount_mismatch(self, app, make_earning):
        e1 = make_earning(net=8750)
        e2 = make_earning(net=5000)

        with pytest.raises(AppError) as exc:
            PayoutService.create_payout(
                PayoutRequest(business_id="biz_1", amount=13751, earning_entry_ids=[e1.id, e2.id])
            )

        assert exc.value.code == AMOUNT_MISMATCH
        assert Payout.query.count() == 0
        assert _refresh(EarningEntry, e1.id).status == "available"

    def test_all_violations_reported(self, app, make_earning):
        good = make_earning()
        other = make_earning(business_id="biz_2")
        pending = make_earning(status="pending")
        empty = make_earning(net=0)

        with pytest.raises(AppError) as exc:
            PayoutService.create_payout(
                PayoutRequest(
                    business_id="biz_1",
                    earning_entry_ids=[good.id, good.id, other.id, pending.id, empty.id, 9999],
                )
            )

        err = exc.value
        assert err.code == EARNINGS_VALIDATION_FAILED
        assert err.status_code == 400
        assert len(err.errors) == 5
        joined = " | ".join(err.errors)
        assert f"Duplicate earning ids in request: {good.id}" in joined
        assert "does not belong to business biz_1 (belongs to: biz_2)" in joined
        assert "current status: pending" in joined
        assert "has invalid net amount: 0" in joined
        assert "Earning 9999 not found" in joined
        assert _refresh(EarningEntry, good.id).status == "available"

    def test_earning_cannot_be_paid_twice(self, app, make_earning):
        earning = make_earning()
        PayoutService.create_payout(PayoutRequest(business_id="biz_1", earning_entry_ids=[earning.id]))

        with pytest.raises(AppError) as exc:
            PayoutService.create_payout(PayoutRequest(business_id="biz_1", earning_entry_ids=[earning.id]))

        assert exc.value.code == EARNINGS_VALIDATION_FAILED
        assert Payout.query.count() == 1

    def test_empty_id_list_rejected(self, app):
        with pytest.raises(AppError):
            PayoutRequest(business_id="biz_1", earning_entry_ids=[])


class TestAmountAllocation:
    def test_oldest_first_without_split(self, app, make_earning):
        e1 = make_earning(net=20000, created_at=T0)
        e2 = make_earning(net=30000, created_at=T0 + timedelta(days=1))
        e3 = make_earning(net=10000, created_at=T0 + timedelta(days=2))

        payout, _ = PayoutService.create_payout(PayoutRequest(business_id="biz_1", amount=50000))

        assert payout.net_amount == 50000
        assert sorted(payout.earning_entries) == sorted([e1.id, e2.id])
        assert _refresh(EarningEntry, e3.id).status == "available"
        assert EarningEntry.query.count() == 3

    def test_split_preserves_fee_invariant(self, app, make_earning):
        e1 = make_earning(gross=10000, platform_fee=1000, processing_fee=309, net=8691, created_at=T0)
        e2 = make_earning(gross=5500, platform_fee=500, net=5000, created_at=T0 + timedelta(days=1))

        payout, _ = PayoutService.create_payout(PayoutRequest(business_id="biz_1", amount=10000))

        assert payout.total_amount == 11439
        assert payout.fee_amount == 1439
        assert payout.net_amount == 10000

        piece_id = next(i for i in payout.earning_entries if i not in (e1.id, e2.id))
        piece = _refresh(EarningEntry, piece_id)
        assert (piece.gross_amount, piece.platform_fee, piece.payment_processing_fee, piece.net_amount) == (
            1439,
            130,
            0,
            1309,
        )
        assert piece.meta["split_from"] == e2.id
        assert piece.status == "paid_out"

        remainder = _refresh(EarningEntry, e2.id)
        assert (
            remainder.gross_amount,
            remainder.platform_fee,
            remainder.payment_processing_fee,
            remainder.net_amount,
        ) == (4061, 370, 0, 3691)
        assert remainder.status == "available"
        assert remainder.payout_id is None

        assert AuditLog.query.filter_by(entity_type="earning", entity_id=str(e2.id), action="split").count() == 1

    def test_amount_exceeds_available(self, app, make_earning):
        make_earning(net=5000)

        with pytest.raises(AppError) as exc:
            PayoutService.create_payout(PayoutRequest(business_id="biz_1", amount=5001))
        assert exc.value.code == AMOUNT_EXCEEDS_AVAILABLE

    def test_no_available_balance(self, app, make_earning):
        make_earning(status="pending")

        with pytest.raises(AppError) as exc:
            PayoutService.create_payout(PayoutRequest(business_id="biz_1"))
        assert exc.value.code == NO_AVAILABLE_BALANCE

    def test_omitted_amount_pays_everything_available(self, app, make_earning):
        make_earning(net=1200)
        make_earning(net=800)
        make_earning(net=500, business_id="biz_2")

        payout, _ = PayoutService.create_payout(PayoutRequest(business_id="biz_1"))

        assert payout.net_amount == 2000
        assert len(payout.earning_entries) == 2

    def test_locked_earnings_are_not_allocated_again(self, app, make_earning):
        make_earning(net=4000)
        make_earning(net=6000)
        first, _ = PayoutService.create_payout(PayoutRequest(business_id="biz_1"))

        with pytest.raises(AppError) as exc:
            PayoutService.create_payout(PayoutRequest(business_id="biz_1"))
        assert exc.value.code == NO_AVAILABLE_BALANCE

        with pytest.raises(AppError) as exc:
            PayoutService.create_payout(PayoutRequest(business_id="biz_1", amount=1000))
        assert exc.value.code == AMOUNT_EXCEEDS_AVAILABLE

        assert Payout.query.count() == 1
        assert {e.payout_id for e in EarningEntry.query.all()} == {first.id}

    def test_unsafe_split_rolls_back(self, app, make_earning):
        # Consultation entries record the platform fee while net == gross.
        earning = make_earning(gross=1350, platform_fee=500, net=1350, type="consultation_fee")

        with pytest.raises(AppError) as exc:
            PayoutService.create_payout(PayoutRequest(business_id="biz_1", amount=675))

        assert exc.value.code == UNSAFE_SPLIT
        assert Payout.query.count() == 0
        assert EarningEntry.query.count() == 1
        untouched = _refresh(EarningEntry, earning.id)
        assert untouched.net_amount == 1350
        assert untouched.status == "available"


class TestIdempotency:
    def test_same_key_returns_existing_payout(self, app, make_earning):
        make_earning(net=3000)
        make_earning(net=2000)

        first, created = PayoutService.create_payout(
            PayoutRequest(business_id="biz_1", amount=3000, idempotency_key="req-1")
        )
        second, replayed = PayoutService.create_payout(
            PayoutRequest(business_id="biz_1", amount=3000, idempotency_key="req-1")
        )

        assert created is True
        assert replayed is False
        assert second.id == first.id
        assert Payout.query.count() == 1
        linked = EarningEntry.query.filter(EarningEntry.payout_id.isnot(None)).all()
        assert linked
        assert {earning.payout_id for earning in linked} == {first.id}

    def test_key_is_scoped_per_business(self, app, make_earning):
        make_earning(net=3000)
        make_earning(net=3000, business_id="biz_2")

        first, _ = PayoutService.create_payout(PayoutRequest(business_id="biz_1", idempotency_key="req-1"))
        second, created = PayoutService.create_payout(PayoutRequest(business_id="biz_2", idempotency_key="req-1"))

        assert created is True
        assert second.id != first.id


class TestPayoutLifecycle:
    @pytest.fixture()
    def payout(self, app, make_earning):
        make_earning(net=4000)
        make_earning(net=6000)
        payout, _ = PayoutService.create_payout(PayoutRequest(business_id="biz_1"))
        return payout

    def test_process_completes_and_pays_earnings(self, payout):
        result = PayoutService.process_payout(payout.id)

        assert result.status == "completed"
        assert result.transaction_id.startswith(f"sim_tr_{payout.id}_")
        assert result.completed_at is not None
        statuses = {e.status for e in EarningEntry.query.filter_by(payout_id=payout.id)}
        assert statuses == {"paid"}

    def test_provider_failure_keeps_earnings_locked(self, payout):
        result = PayoutService.process_payout(payout.id, provider=FailingProvider())

        assert result.status == "failed"
        assert result.failure_reason == "bank rejected transfer"
        statuses = {e.status for e in EarningEntry.query.filter_by(payout_id=payout.id)}
        assert statuses == {"paid_out"}

    def test_retry_after_failure(self, payout):
        PayoutService.process_payout(payout.id, provider=FailingProvider())

        retried = PayoutService.retry_payout(payout.id)
        assert retried.status == "pending"
        assert retried.failure_reason is None

        assert PayoutService.process_payout(payout.id).status == "completed"

    def test_cancel_releases_earnings(self, payout):
        earning_ids = list(payout.earning_entries)

        cancelled = PayoutService.cancel_payout(payout.id, reason="duplicate request")

        assert cancelled.status == "failed"
        assert cancelled.failure_reason == "duplicate request"
        assert cancelled.meta["cancelled"] is True
        for earning_id in earning_ids:
            earning = _refresh(EarningEntry, earning_id)
            assert earning.status == "available"
            assert earning.payout_id is None

    def test_cancelled_payout_cannot_be_retried(self, payout):
        PayoutService.cancel_payout(payout.id)

        with pytest.raises(AppError) as exc:
            PayoutService.retry_payout(payout.id)
        assert exc.value.code == INVALID_TRANSITION

    def test_only_pending_payouts_can_be_cancelled(self, payout):
        PayoutService.process_payout(payout.id)

        with pytest.raises(AppError) as exc:
            PayoutService.cancel_payout(payout.id)
        assert exc.value.code == INVALID_TRANSITION

    def test_completed_payout_cannot_be_processed_again(self, payout):
        PayoutService.process_payout(payout.id)

        with pytest.raises(AppError):
            PayoutService.process_payout(payout.id)

    def test_in_flight_payout_cannot_be_deleted(self, payout):
        with pytest.raises(AppError):
            PayoutService.delete_payout(payout.id)

    def test_audit_trail(self, payout):
        PayoutService.process_payout(payout.id, actor="ops@example.com")

        actions = {log.action for log in AuditLog.query.filter_by(entity_type="payout", entity_id=str(payout.id))}
        assert actions == {"create", "complete"}


class TestValidation:
    def test_valid_selection(self, app, make_earning):
        e1 = make_earning(net=1500)
        e2 = make_earning(net=2500)

        result = PayoutService.validate_earnings_for_payout("biz_1", [e1.id, e2.id])

        assert result["valid"] is True
        assert result["errors"] == []
        assert result["total_amount"] == 4000

    def test_validation_has_no_side_effects(self, app, make_earning):
        earning = make_earning(business_id="biz_2")

        result = PayoutService.validate_earnings_for_payout("biz_1", [earning.id])

        assert result["valid"] is False
        assert len(result["errors"]) == 1
        assert _refresh(EarningEntry, earning.id).status == "available"

    def test_missing_inputs(self, app):
        assert PayoutService.validate_earnings_for_payout("", [1])["errors"] == ["Business ID is required"]
        assert PayoutService.validate_earnings_for_payout("biz_1", [])["errors"] == [
            "At least one earning ID is required"
        ]
