"""Typed inputs and query criteria for the financial services."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from rxfinancials.errors import INVALID_INPUT, AppError
from rxfinancials.services.fees import MAX_MINOR_UNITS
from rxfinancials.services.ledger import EARNING_TYPES, EARNING_TRANSITIONS, PAYOUT_METHODS, PAYOUT_TRANSITIONS

PERIODS = {"day", "week", "month", "year"}


def require_object(payload, label):
    if not isinstance(payload, dict):
        raise AppError(f"{label} must be a JSON object.", 400, INVALID_INPUT)
    return payload


def _required_str(payload, key):
    value = payload.get(key)
    if value is None or not str(value).strip():
        raise AppError(f"{key} is required.", 400, INVALID_INPUT)
    return str(value).strip()


def _optional_str(payload, key):
    value = payload.get(key)
    if value is None:
        return None
    return str(value).strip() or None


def parse_minor_units(value, label, allow_zero=True):
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        raise AppError(f"{label} must be an integer amount in minor units.", 400, INVALID_INPUT)
    if isinstance(value, float):
        if not value.is_integer():
            raise AppError(f"{label} must be an integer amount in minor units.", 400, INVALID_INPUT)
        value = int(value)
    try:
        amount = int(value)
    except (TypeError, ValueError) as exc:
        raise AppError(f"{label} must be an integer amount in minor units.", 400, INVALID_INPUT) from exc
    if amount < 0 or (amount == 0 and not allow_zero):
        raise AppError(f"{label} must be positive.", 400, INVALID_INPUT)
    if amount > MAX_MINOR_UNITS:
        raise AppError(f"{label} is too large.", 400, INVALID_INPUT)
    return amount


def parse_datetime(value, label):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise AppError(f"{label} must be an ISO-8601 datetime.", 400, INVALID_INPUT) from exc


@dataclass(frozen=True)
class LineItemInput:
    id: str
    unit_price: int
    quantity: int
    total: int
    title: Optional[str] = None

    @classmethod
    def from_payload(cls, payload):
        require_object(payload, "Line item")
        try:
            quantity = int(payload.get("quantity", 1))
        except (TypeError, ValueError) as exc:
            raise AppError("Line item quantity must be an integer.", 400, INVALID_INPUT) from exc
        return cls(
            id=_required_str(payload, "id"),
            unit_price=parse_minor_units(payload.get("unit_price", 0), "unit_price"),
            quantity=quantity,
            total=parse_minor_units(payload.get("total"), "total"),
            title=_optional_str(payload, "title"),
        )


@dataclass(frozen=True)
class OrderInput:
    id: str
    business_id: str
    items: List[LineItemInput]
    shipping_total: int = 0
    currency_code: Optional[str] = None

    def __post_init__(self):
        if self.total > MAX_MINOR_UNITS:
            raise AppError("Order total is too large.", 400, INVALID_INPUT)

    @classmethod
    def from_payload(cls, payload):
        require_object(payload, "Order")
        raw_items = payload.get("items")
        if not isinstance(raw_items, list):
            raise AppError("items must be a list.", 400, INVALID_INPUT)
        return cls(
            id=_required_str(payload, "id"),
            business_id=_required_str(payload, "business_id"),
            items=[LineItemInput.from_payload(item) for item in raw_items],
            shipping_total=parse_minor_units(payload.get("shipping_total") or 0, "shipping_total"),
            currency_code=_optional_str(payload, "currency_code"),
        )

    @property
    def subtotal(self):
        return sum(item.total for item in self.items)

    @property
    def total(self):
        return self.subtotal + self.shipping_total


@dataclass(frozen=True)
class ConsultationInput:
    id: str
    business_id: str
    fee: str
    clinician_id: Optional[str] = None
    currency_code: Optional[str] = None

    @classmethod
    def from_payload(cls, payload):
        require_object(payload, "Consultation")
        if payload.get("fee") is None:
            raise AppError("fee is required.", 400, INVALID_INPUT)
        return cls(
            id=_required_str(payload, "id"),
            business_id=_required_str(payload, "business_id"),
            fee=str(payload.get("fee")),
            clinician_id=_optional_str(payload, "clinician_id"),
            currency_code=_optional_str(payload, "currency_code"),
        )


@dataclass(frozen=True)
class PayoutRequest:
    business_id: str
    method: str = "stripe_connect"
    amount: Optional[int] = None
    destination_account: Optional[str] = None
    earning_entry_ids: Optional[List[int]] = None
    idempotency_key: Optional[str] = None
    requested_by: Optional[str] = None

    def __post_init__(self):
        if not self.business_id:
            raise AppError("business_id is required.", 400, INVALID_INPUT)
        if self.method not in PAYOUT_METHODS:
            raise AppError(f"Invalid payout method: {self.method}.", 400, INVALID_INPUT)
        if self.earning_entry_ids is not None and not self.earning_entry_ids:
            raise AppError("earning_entry_ids cannot be empty.", 400, INVALID_INPUT)

    @property
    def is_explicit(self):
        return self.earning_entry_ids is not None

    @classmethod
    def from_payload(cls, payload, idempotency_key=None, requested_by=None):
        require_object(payload, "Payout request")
        amount = payload.get("amount")
        raw_ids = payload.get("earning_entry_ids")
        ids = None
        if raw_ids is not None:
            if not isinstance(raw_ids, list):
                raise AppError("earning_entry_ids must be a list.", 400, INVALID_INPUT)
            try:
                ids = [int(item) for item in raw_ids]
            except (TypeError, ValueError) as exc:
                raise AppError("earning_entry_ids must contain integer ids.", 400, INVALID_INPUT) from exc
        return cls(
            business_id=_required_str(payload, "business_id"),
            method=str(payload.get("method") or "stripe_connect").strip().lower(),
            amount=None if amount is None else parse_minor_units(amount, "amount"),
            destination_account=_optional_str(payload, "destination_account"),
            earning_entry_ids=ids,
            idempotency_key=idempotency_key or _optional_str(payload, "idempotency_key"),
            requested_by=requested_by,
        )


@dataclass(frozen=True)
class EarningCriteria:
    business_id: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None
    order_id: Optional[str] = None
    consultation_id: Optional[str] = None
    payout_id: Optional[int] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    include_deleted: bool = False
    statuses: List[str] = field(default_factory=list)

    def __post_init__(self):
        for status in [self.status, *self.statuses]:
            if status is not None and status not in EARNING_TRANSITIONS:
                raise AppError(f"Invalid earning status: {status}.", 400, INVALID_INPUT)
        if self.type is not None and self.type not in EARNING_TYPES:
            raise AppError(f"Invalid earning type: {self.type}.", 400, INVALID_INPUT)

    @classmethod
    def from_args(cls, args):
        return cls(
            business_id=args.get("business_id") or None,
            status=args.get("status") or None,
            type=args.get("type") or None,
            order_id=args.get("order_id") or None,
            consultation_id=args.get("consultation_id") or None,
            date_from=parse_datetime(args.get("date_from"), "date_from"),
            date_to=parse_datetime(args.get("date_to"), "date_to"),
            include_deleted=str(args.get("include_deleted", "")).lower() in {"1", "true", "yes"},
        )


@dataclass(frozen=True)
class PayoutCriteria:
    business_id: Optional[str] = None
    status: Optional[str] = None
    include_deleted: bool = False

    def __post_init__(self):
        if self.status is not None and self.status not in PAYOUT_TRANSITIONS:
            raise AppError(f"Invalid payout status: {self.status}.", 400, INVALID_INPUT)

    @classmethod
    def from_args(cls, args):
        return cls(
            business_id=args.get("business_id") or None,
            status=args.get("status") or None,
            include_deleted=str(args.get("include_deleted", "")).lower() in {"1", "true", "yes"},
        )
