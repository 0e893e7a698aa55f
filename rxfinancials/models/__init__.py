from rxfinancials.models.audit_log import AuditLog
from rxfinancials.models.earning import EarningEntry
from rxfinancials.models.payout import Payout
from rxfinancials.models.platform_setting import PlatformSetting

__all__ = [
    "EarningEntry",
    "Payout",
    "AuditLog",
    "PlatformSetting",
]
