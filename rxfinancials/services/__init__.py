from rxfinancials.services.audit_service import AuditService
from rxfinancials.services.earnings_service import EarningsService
from rxfinancials.services.payout_provider import PayoutProviderError, SimulatedPayoutProvider
from rxfinancials.services.payout_service import PayoutService
from rxfinancials.services.platform_service import PlatformService

__all__ = [
    "AuditService",
    "EarningsService",
    "PayoutProviderError",
    "PayoutService",
    "PlatformService",
    "SimulatedPayoutProvider",
]
