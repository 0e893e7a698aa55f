from flask import Blueprint, jsonify, request

from rxfinancials.decorators import request_actor, token_required
from rxfinancials.errors import INVALID_INPUT, AppError
from rxfinancials.extensions import cache
from rxfinancials.services import EarningsService
from rxfinancials.services.inputs import ConsultationInput, EarningCriteria, OrderInput, parse_datetime

api_earning_bp = Blueprint("api_earning", __name__)


def _earnings_response(earnings, status=200):
    return jsonify({"earnings": [e.to_dict() for e in earnings]}), status


@api_earning_bp.get("")
@token_required
def list_earnings():
    criteria = EarningCriteria.from_args(request.args)
    page = request.args.get("page", default=1, type=int)
    per_page = request.args.get("per_page", default=20, type=int)
    paginated = EarningsService.list_earnings(criteria, page=page, per_page=min(per_page, 100))
    return jsonify(
        {
            "earnings": [e.to_dict() for e in paginated.items],
            "meta": {
                "page": paginated.page,
                "pages": paginated.pages,
                "total": paginated.total,
                "has_next": paginated.has_next,
                "has_prev": paginated.has_prev,
            },
        }
    )


@api_earning_bp.post("/orders")
@token_required
def calculate_order_earnings():
    order = OrderInput.from_payload(request.get_json(silent=True) or {})
    earnings = EarningsService.calculate_order_earnings(order, actor=request_actor())
    return _earnings_response(earnings, 201)


@api_earning_bp.post("/orders/<order_id>/available")
@token_required
def make_order_earnings_available(order_id):
    earnings = EarningsService.make_earnings_available(order_id, actor=request_actor())
    return _earnings_response(earnings)


@api_earning_bp.post("/orders/<order_id>/cancel")
@token_required
def cancel_order_earnings(order_id):
    reversed_ids = EarningsService.cancel_earnings(order_id, actor=request_actor())
    return jsonify({"reversed": reversed_ids})


@api_earning_bp.post("/consultations")
@token_required
def calculate_consultation_earnings():
    consultation = ConsultationInput.from_payload(request.get_json(silent=True) or {})
    earnings = EarningsService.calculate_consultation_earnings(consultation, actor=request_actor())
    return _earnings_response(earnings, 201)


@api_earning_bp.post("/consultations/<consultation_id>/available")
@token_required
def make_consultation_earnings_available(consultation_id):
    earnings = EarningsService.make_consultation_earnings_available(consultation_id, actor=request_actor())
    return _earnings_response(earnings)


@api_earning_bp.get("/summary")
@token_required
def earnings_summary():
    business_id = (request.args.get("business_id") or "").strip()
    if not business_id:
        raise AppError("business_id is required.", 400, INVALID_INPUT)
    summary = EarningsService.get_earnings_summary(business_id)
    next_date = summary["next_payout_date"]
    summary["next_payout_date"] = next_date.isoformat() if next_date else None
    return jsonify({"business_id": business_id, **summary})


@api_earning_bp.get("/platform-summary")
@token_required
@cache.cached(timeout=30, query_string=True)
def platform_summary():
    summary = EarningsService.get_platform_summary()
    period = request.args.get("period")
    by_period = []
    if period:
        by_period = EarningsService.get_earnings_by_period(
            period,
            date_from=parse_datetime(request.args.get("date_from"), "date_from"),
            date_to=parse_datetime(request.args.get("date_to"), "date_to"),
        )
    return jsonify({**summary, "earnings_by_period": by_period})


@api_earning_bp.get("/<int:earning_id>")
@token_required
def get_earning(earning_id):
    include_deleted = request.args.get("include_deleted", "").lower() in {"1", "true", "yes"}
    earning = EarningsService.get_earning(earning_id, include_deleted=include_deleted)
    return jsonify({"earning": earning.to_dict()})


@api_earning_bp.delete("/<int:earning_id>")
@token_required
def delete_earning(earning_id):
    earning = EarningsService.delete_earning(earning_id, actor=request_actor())
    return jsonify({"earning": earning.to_dict()})


@api_earning_bp.post("/<int:earning_id>/restore")
@token_required
def restore_earning(earning_id):
    earning = EarningsService.restore_earning(earning_id, actor=request_actor())
    return jsonify({"earning": earning.to_dict()})
