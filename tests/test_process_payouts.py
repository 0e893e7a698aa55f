from datetime import timedelta, timezone

from rxfinancials.extensions import db
from rxfinancials.jobs import process_due_payouts
from rxfinancials.models import Payout
from rxfinancials.services import PayoutService, PlatformService
from rxfinancials.services.inputs import PayoutRequest


class BrokenProvider:
    def transfer(self, payout):
        raise RuntimeError("connection reset")


def _pending_payout(make_earning, business_id="biz_1"):
    make_earning(business_id=business_id, net=5000)
    payout, _ = PayoutService.create_payout(PayoutRequest(business_id=business_id))
    return payout.id, payout.requested_at.replace(tzinfo=timezone.utc)


def _status(payout_id):
    db.session.expire_all()
    return db.session.get(Payout, payout_id)


class TestProcessDuePayouts:
    def test_payout_inside_default_hold_is_skipped(self, app, make_earning):
        payout_id, requested_at = _pending_payout(make_earning)

        counts = process_due_payouts(now=requested_at + timedelta(days=13))

        assert counts == {"processed": 0, "failed": 0, "skipped": 1}
        assert _status(payout_id).status == "pending"

    def test_payout_processed_after_hold(self, app, make_earning):
        payout_id, requested_at = _pending_payout(make_earning)

        counts = process_due_payouts(now=requested_at + timedelta(days=15))

        assert counts == {"processed": 1, "failed": 0, "skipped": 0}
        assert _status(payout_id).status == "completed"

    def test_per_business_hold_override(self, app, make_earning):
        PlatformService.set_setting("payout_hold_days:biz_1", "30")
        payout_id, requested_at = _pending_payout(make_earning)

        assert process_due_payouts(now=requested_at + timedelta(days=15))["skipped"] == 1
        assert process_due_payouts(now=requested_at + timedelta(days=31))["processed"] == 1
        assert _status(payout_id).status == "completed"

    def test_hold_override_is_floored_at_seven_days(self, app, make_earning):
        PlatformService.set_setting("payout_hold_days:biz_1", "3")
        _pending_payout(make_earning)

        assert PlatformService.payout_hold_hours("biz_1") == 168
        assert PlatformService.payout_hold_hours("biz_2") == 336

    def test_chargeback_history_gets_high_risk_hold(self, app, make_earning):
        PlatformService.set_setting("has_chargeback_history:biz_1", "true")
        payout_id, requested_at = _pending_payout(make_earning)

        assert PlatformService.payout_hold_hours("biz_1") == 720
        assert process_due_payouts(now=requested_at + timedelta(days=15))["skipped"] == 1
        assert process_due_payouts(now=requested_at + timedelta(days=31))["processed"] == 1
        assert _status(payout_id).status == "completed"

    def test_custom_hold_takes_precedence_over_chargeback_flag(self, app):
        PlatformService.set_setting("has_chargeback_history:biz_1", "true")
        PlatformService.set_setting("payout_hold_days:biz_1", "10")

        assert PlatformService.payout_hold_hours("biz_1") == 240

    def test_cleared_chargeback_flag_uses_default_hold(self, app):
        PlatformService.set_setting("has_chargeback_history:biz_1", "false")

        assert PlatformService.payout_hold_hours("biz_1") == 336

    def test_unexpected_errors_use_retry_budget(self, app, make_earning):
        payout_id, requested_at = _pending_payout(make_earning)
        later = requested_at + timedelta(days=20)

        first = process_due_payouts(now=later, provider=BrokenProvider())
        payout = _status(payout_id)
        assert first == {"processed": 0, "failed": 0, "skipped": 0}
        assert payout.status == "pending"
        assert payout.meta["retry_count"] == 1
        assert payout.failure_reason == "connection reset"

        process_due_payouts(now=later, provider=BrokenProvider())
        third = process_due_payouts(now=later, provider=BrokenProvider())

        payout = _status(payout_id)
        assert third["failed"] == 1
        assert payout.status == "failed"
        assert payout.meta["retry_count"] == 3

    def test_command_prints_counts(self, app, make_earning):
        _pending_payout(make_earning)

        result = app.test_cli_runner().invoke(args=["process-payouts"])

        assert result.exit_code == 0
        assert "processed=0 failed=0 skipped=1" in result.output

    def test_cancelled_payouts_are_ignored(self, app, make_earning):
        payout_id, requested_at = _pending_payout(make_earning)
        PayoutService.cancel_payout(payout_id)

        counts = process_due_payouts(now=requested_at + timedelta(days=30))

        assert counts == {"processed": 0, "failed": 0, "skipped": 0}
        assert _status(payout_id).meta["cancelled"] is True
