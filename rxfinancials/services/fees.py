"""
Fee model for marketplace earnings.

All amounts are integer minor currency units (cents). Percentages are
fractions (0.10 == 10%). Rounding is round-half-up on whole cents.

Processor fee model:
- order_percentage_fee = round(order_total * processor_percent)
- order_fixed_fee = processor_fixed_cents, charged ONCE per order
- each line gets round(order_percentage_fee * ratio) + round(order_fixed_fee * ratio)
  where ratio = line_gross / order_total
- per-line rounding drift against the order-level total is accepted
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from rxfinancials.errors import INVALID_INPUT, UNSAFE_SPLIT, AppError

DEFAULT_PLATFORM_FEE_PERCENT = Decimal("0.10")
DEFAULT_PROCESSOR_PERCENT_FEE = Decimal("0.029")
DEFAULT_PROCESSOR_FIXED_FEE_CENTS = 30
DEFAULT_CLINICIAN_SHARE_PERCENT = Decimal("0.70")

# Largest amount a BIGINT money column can hold.
MAX_MINOR_UNITS = 2**63 - 1


def round_half_up(value) -> int:
    try:
        return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation as exc:
        raise AppError(f"Invalid money amount: {value!r}.", 400, INVALID_INPUT) from exc


def to_minor_units(amount) -> int:
    """Convert a decimal major-unit amount ("50.00") to integer cents."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise AppError(f"Invalid money amount: {amount!r}.", 400, INVALID_INPUT) from exc
    if not value.is_finite():
        raise AppError(f"Invalid money amount: {amount!r}.", 400, INVALID_INPUT)
    if abs(value * 100) > MAX_MINOR_UNITS:
        raise AppError(f"Money amount {amount!r} is too large.", 400, INVALID_INPUT)
    return round_half_up(value * 100)


@dataclass(frozen=True)
class FeeSchedule:
    platform_percent: Decimal = DEFAULT_PLATFORM_FEE_PERCENT
    processor_percent: Decimal = DEFAULT_PROCESSOR_PERCENT_FEE
    processor_fixed_cents: int = DEFAULT_PROCESSOR_FIXED_FEE_CENTS
    clinician_share_percent: Decimal = DEFAULT_CLINICIAN_SHARE_PERCENT

    def platform_fee(self, gross: int) -> int:
        return round_half_up(Decimal(gross) * self.platform_percent)


@dataclass(frozen=True)
class OrderProcessorFee:
    order_total: int
    percentage_fee: int
    fixed_fee: int

    @property
    def total(self) -> int:
        return self.percentage_fee + self.fixed_fee

    def ratio_for(self, gross: int) -> Decimal:
        if self.order_total <= 0:
            return Decimal("0")
        return Decimal(gross) / Decimal(self.order_total)


@dataclass(frozen=True)
class LineFee:
    gross: int
    ratio: Decimal
    platform_fee: int
    percentage_portion: int
    fixed_portion: int

    @property
    def processing_fee(self) -> int:
        return self.percentage_portion + self.fixed_portion

    @property
    def net(self) -> int:
        return self.gross - self.platform_fee - self.processing_fee

    def breakdown(self):
        return {
            "percentage_portion": self.percentage_portion,
            "fixed_portion": self.fixed_portion,
            "ratio": float(self.ratio),
        }


def order_processor_fee(order_total: int, schedule: FeeSchedule) -> OrderProcessorFee:
    if order_total <= 0:
        return OrderProcessorFee(order_total=order_total, percentage_fee=0, fixed_fee=0)
    return OrderProcessorFee(
        order_total=order_total,
        percentage_fee=round_half_up(Decimal(order_total) * schedule.processor_percent),
        fixed_fee=schedule.processor_fixed_cents,
    )


def line_fee(gross: int, order_fee: OrderProcessorFee, schedule: FeeSchedule) -> LineFee:
    ratio = order_fee.ratio_for(gross)
    if order_fee.order_total <= 0:
        return LineFee(gross=gross, ratio=ratio, platform_fee=0, percentage_portion=0, fixed_portion=0)
    return LineFee(
        gross=gross,
        ratio=ratio,
        platform_fee=schedule.platform_fee(gross),
        percentage_portion=round_half_up(order_fee.percentage_fee * ratio),
        fixed_portion=round_half_up(order_fee.fixed_fee * ratio),
    )


@dataclass(frozen=True)
class ConsultationSplit:
    total: int
    platform_fee: int
    clinician_share: int
    business_share: int

    @property
    def remaining(self) -> int:
        return self.total - self.platform_fee


def consultation_split(total: int, schedule: FeeSchedule, has_clinician: bool) -> ConsultationSplit:
    platform_fee = schedule.platform_fee(total)
    remaining = total - platform_fee
    clinician_share = round_half_up(Decimal(remaining) * schedule.clinician_share_percent) if has_clinician else 0
    return ConsultationSplit(
        total=total,
        platform_fee=platform_fee,
        clinician_share=clinician_share,
        business_share=remaining - clinician_share,
    )


@dataclass(frozen=True)
class EarningAmounts:
    gross: int
    platform_fee: int
    processing_fee: int
    net: int
    clinician_fee: Optional[int] = None

    @classmethod
    def of(cls, earning):
        return cls(
            gross=int(earning.gross_amount),
            platform_fee=int(earning.platform_fee or 0),
            processing_fee=int(earning.payment_processing_fee or 0),
            net=int(earning.net_amount),
            clinician_fee=None if earning.clinician_fee is None else int(earning.clinician_fee),
        )


def split_amounts(amounts: EarningAmounts, take: int):
    """Split ``amounts`` so that the part carries exactly ``take`` net.

    Returns ``(remainder, part)``. Gross, platform fee and clinician fee of
    the part are floored at ``take / net``; the processing fee is derived so
    the part nets to ``take`` and must fit inside the original processing fee.
    """
    if take <= 0 or take >= amounts.net:
        raise AppError(
            f"Split amount {take} must be between 1 and {amounts.net - 1}.",
            400,
            INVALID_INPUT,
        )

    part_gross = amounts.gross * take // amounts.net
    part_platform = amounts.platform_fee * take // amounts.net
    part_processing = part_gross - part_platform - take
    if part_processing < 0 or part_processing > amounts.processing_fee:
        raise AppError(
            "Unable to split earning safely: derived processing fee "
            f"{part_processing} is outside [0, {amounts.processing_fee}].",
            409,
            UNSAFE_SPLIT,
        )

    part_clinician = None
    remainder_clinician = None
    if amounts.clinician_fee is not None:
        part_clinician = amounts.clinician_fee * take // amounts.net
        remainder_clinician = amounts.clinician_fee - part_clinician

    part = EarningAmounts(
        gross=part_gross,
        platform_fee=part_platform,
        processing_fee=part_processing,
        net=take,
        clinician_fee=part_clinician,
    )
    remainder = EarningAmounts(
        gross=amounts.gross - part_gross,
        platform_fee=amounts.platform_fee - part_platform,
        processing_fee=amounts.processing_fee - part_processing,
        net=amounts.net - take,
        clinician_fee=remainder_clinician,
    )
    return remainder, part
