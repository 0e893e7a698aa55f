from flask import Blueprint, jsonify
from sqlalchemy import text

from rxfinancials.extensions import db
from rxfinancials.routes.api.v1.earnings import api_earning_bp
from rxfinancials.routes.api.v1.payouts import api_payout_bp

api_v1_bp = Blueprint("api_v1", __name__)
api_v1_bp.register_blueprint(api_earning_bp, url_prefix="/earnings")
api_v1_bp.register_blueprint(api_payout_bp, url_prefix="/payouts")


@api_v1_bp.get("/health")
def health():
    db.session.execute(text("SELECT 1"))
    return jsonify({"status": "ok"})
