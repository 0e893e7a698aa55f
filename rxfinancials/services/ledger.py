from rxfinancials.errors import INVALID_TRANSITION, AppError
from rxfinancials.models.base import utcnow

PENDING = "pending"
AVAILABLE = "available"
PAID_OUT = "paid_out"
PAID = "paid"
REVERSED = "reversed"

EARNING_TYPES = {"product_sale", "consultation_fee", "shipping_fee", "platform_fee", "clinician_fee"}

EARNING_TRANSITIONS = {
    PENDING: {AVAILABLE, REVERSED},
    AVAILABLE: {PAID_OUT, REVERSED},
    PAID_OUT: {PAID, AVAILABLE},
    PAID: set(),
    REVERSED: set(),
}

PAYOUT_PENDING = "pending"
PAYOUT_PROCESSING = "processing"
PAYOUT_COMPLETED = "completed"
PAYOUT_FAILED = "failed"

PAYOUT_METHODS = {"ach", "wire", "check", "stripe_connect"}

PAYOUT_TRANSITIONS = {
    PAYOUT_PENDING: {PAYOUT_PROCESSING, PAYOUT_FAILED},
    PAYOUT_PROCESSING: {PAYOUT_COMPLETED, PAYOUT_FAILED, PAYOUT_PENDING},
    PAYOUT_FAILED: {PAYOUT_PENDING},
    PAYOUT_COMPLETED: set(),
}


def can_transition(current, new_status):
    return new_status in EARNING_TRANSITIONS.get(current, set())


def transition_earning(earning, new_status, payout_id=None, now=None):
    """Move an earning to ``new_status`` keeping the payout link consistent.

    Entering paid_out requires a payout id; leaving paid_out for available
    clears it. Paid and reversed are terminal.
    """
    current = earning.status
    if not can_transition(current, new_status):
        raise AppError(
            f"Invalid earning transition from {current} to {new_status} for earning {earning.id}.",
            409,
            INVALID_TRANSITION,
        )

    now = now or utcnow()
    if new_status == PAID_OUT:
        if payout_id is None:
            raise AppError("A payout id is required to lock an earning.", 409, INVALID_TRANSITION)
        earning.payout_id = payout_id
    elif new_status == AVAILABLE:
        if current == PENDING:
            earning.available_at = now
        earning.payout_id = None
    elif new_status == PAID:
        earning.paid_at = now

    earning.status = new_status
    return earning


def transition_payout(payout, new_status):
    current = payout.status
    if new_status not in PAYOUT_TRANSITIONS.get(current, set()):
        raise AppError(
            f"Payout {payout.id} cannot move from {current} to {new_status}.",
            409,
            INVALID_TRANSITION,
        )
    payout.status = new_status
    return payout
