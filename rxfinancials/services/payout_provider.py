import random
import uuid
from dataclasses import dataclass


class PayoutProviderError(Exception):
    pass


@dataclass(frozen=True)
class TransferResult:
    transaction_id: str
    status: str = "paid"


class SimulatedPayoutProvider:
    """Stand-in for a payment processor's transfer API.

    ``failure_rate`` (0..1) makes a share of transfers fail, for exercising
    the retry path before a real processor is wired in.
    """

    def __init__(self, failure_rate=0.0, rng=None):
        self.failure_rate = min(max(float(failure_rate or 0), 0.0), 1.0)
        self.rng = rng or random.Random()

    @classmethod
    def from_config(cls, config):
        return cls(failure_rate=config.get("PAYOUT_SIM_FAILURE_RATE", 0))

    def transfer(self, payout):
        if self.failure_rate > 0 and self.rng.random() < self.failure_rate:
            raise PayoutProviderError("Simulated payout provider API error")
        return TransferResult(transaction_id=f"sim_tr_{payout.id}_{uuid.uuid4().hex[:12]}")
