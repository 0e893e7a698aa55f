from flask import Blueprint, jsonify, request

from rxfinancials.decorators import request_actor, token_required
from rxfinancials.errors import INVALID_INPUT, AppError
from rxfinancials.extensions import limiter
from rxfinancials.services import AuditService, PayoutService
from rxfinancials.services.inputs import PayoutCriteria, PayoutRequest, require_object

api_payout_bp = Blueprint("api_payout", __name__)


@api_payout_bp.get("")
@token_required
def list_payouts():
    criteria = PayoutCriteria.from_args(request.args)
    page = request.args.get("page", default=1, type=int)
    per_page = request.args.get("per_page", default=20, type=int)
    paginated = PayoutService.list_payouts(criteria, page=page, per_page=min(per_page, 100))
    return jsonify(
        {
            "payouts": [p.to_dict() for p in paginated.items],
            "meta": {
                "page": paginated.page,
                "pages": paginated.pages,
                "total": paginated.total,
                "has_next": paginated.has_next,
                "has_prev": paginated.has_prev,
            },
        }
    )


@api_payout_bp.post("")
@token_required
@limiter.limit("30 per minute")
def create_payout():
    payout_request = PayoutRequest.from_payload(
        request.get_json(silent=True) or {},
        idempotency_key=(request.headers.get("Idempotency-Key") or "").strip() or None,
        requested_by=request_actor(),
    )
    payout, created = PayoutService.create_payout(payout_request)
    return jsonify({"payout": payout.to_dict()}), 201 if created else 200


@api_payout_bp.post("/validate")
@token_required
def validate_payout():
    payload = require_object(request.get_json(silent=True) or {}, "Request body")
    try:
        earning_ids = [int(item) for item in payload.get("earning_entry_ids") or []]
    except (TypeError, ValueError) as exc:
        raise AppError("earning_entry_ids must contain integer ids.", 400, INVALID_INPUT) from exc
    result = PayoutService.validate_earnings_for_payout(payload.get("business_id"), earning_ids)
    return jsonify(
        {
            "valid": result["valid"],
            "errors": result["errors"],
            "earning_ids": [e.id for e in result["earnings"]],
            "total_amount": result["total_amount"],
        }
    )


@api_payout_bp.get("/<int:payout_id>")
@token_required
def get_payout(payout_id):
    payout = PayoutService.get_payout(payout_id)
    audit = AuditService.for_entity("payout", payout.id)
    return jsonify(
        {
            "payout": payout.to_dict(),
            "audit": [
                {
                    "action": entry.action,
                    "actor": entry.actor,
                    "changes": entry.changes,
                    "created_at": entry.created_at.isoformat(),
                }
                for entry in audit
            ],
        }
    )


@api_payout_bp.post("/<int:payout_id>/process")
@token_required
def process_payout(payout_id):
    payout = PayoutService.process_payout(payout_id, actor=request_actor())
    return jsonify({"payout": payout.to_dict()})


@api_payout_bp.post("/<int:payout_id>/cancel")
@token_required
def cancel_payout(payout_id):
    payload = require_object(request.get_json(silent=True) or {}, "Request body")
    payout = PayoutService.cancel_payout(payout_id, reason=payload.get("reason"), actor=request_actor())
    return jsonify({"payout": payout.to_dict()})


@api_payout_bp.post("/<int:payout_id>/retry")
@token_required
def retry_payout(payout_id):
    payout = PayoutService.retry_payout(payout_id, actor=request_actor())
    return jsonify({"payout": payout.to_dict()})


@api_payout_bp.delete("/<int:payout_id>")
@token_required
def delete_payout(payout_id):
    payout = PayoutService.delete_payout(payout_id, actor=request_actor())
    return jsonify({"payout": payout.to_dict()})


@api_payout_bp.post("/<int:payout_id>/restore")
@token_required
def restore_payout(payout_id):
    payout = PayoutService.restore_payout(payout_id, actor=request_actor())
    return jsonify({"payout": payout.to_dict()})
