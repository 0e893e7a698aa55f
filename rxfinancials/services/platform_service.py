from decimal import Decimal, InvalidOperation

from flask import current_app

from rxfinancials.extensions import db
from rxfinancials.models import PlatformSetting
from rxfinancials.services.fees import FeeSchedule


class PlatformService:
    @staticmethod
    def get_setting(key, default=None):
        setting = db.session.get(PlatformSetting, key)
        if not setting:
            return default
        return setting.value

    @staticmethod
    def get_decimal(key, default):
        raw = PlatformService.get_setting(key, str(default))
        try:
            return Decimal(str(raw))
        except (InvalidOperation, ValueError):
            current_app.logger.warning("Ignoring malformed platform setting %s=%r", key, raw)
            return Decimal(str(default))

    @staticmethod
    def get_flag(key):
        return str(PlatformService.get_setting(key, "")).strip().lower() in {"1", "true", "yes"}

    @staticmethod
    def set_setting(key, value):
        setting = db.session.get(PlatformSetting, key)
        if setting:
            setting.value = str(value)
        else:
            setting = PlatformSetting(key=key, value=str(value))
            db.session.add(setting)
        db.session.commit()
        return setting

    @staticmethod
    def fee_schedule():
        config = current_app.config
        return FeeSchedule(
            platform_percent=PlatformService.get_decimal("platform_fee_percent", config["PLATFORM_FEE_PERCENT"]),
            processor_percent=PlatformService.get_decimal("processor_percent_fee", config["PROCESSOR_PERCENT_FEE"]),
            processor_fixed_cents=int(
                PlatformService.get_decimal("processor_fixed_fee_cents", config["PROCESSOR_FIXED_FEE_CENTS"])
            ),
            clinician_share_percent=PlatformService.get_decimal(
                "clinician_share_percent", config["CLINICIAN_SHARE_PERCENT"]
            ),
        )

    @staticmethod
    def payout_hold_hours(business_id):
        """Hold period in hours for a business.

        A per-business override in days wins, floored at the minimum hold.
        Otherwise businesses flagged with chargeback history get the high-risk
        hold, and everyone else the default.
        """
        config = current_app.config
        minimum = int(config["PAYOUT_MIN_HOLD_HOURS"])
        raw_days = PlatformService.get_setting(f"payout_hold_days:{business_id}")
        if raw_days is not None:
            try:
                return max(int(Decimal(raw_days) * 24), minimum)
            except (InvalidOperation, ValueError):
                current_app.logger.warning("Invalid payout hold override for business %s: %r", business_id, raw_days)

        if PlatformService.get_flag(f"has_chargeback_history:{business_id}"):
            return max(int(config["PAYOUT_HIGH_RISK_HOLD_HOURS"]), minimum)
        return max(int(config["PAYOUT_HOLD_HOURS"]), minimum)
