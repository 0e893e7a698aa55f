from flask import jsonify
from sqlalchemy.exc import IntegrityError

INVALID_INPUT = "INVALID_INPUT"
NOT_FOUND = "NOT_FOUND"
AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
AMOUNT_EXCEEDS_AVAILABLE = "AMOUNT_EXCEEDS_AVAILABLE"
NO_AVAILABLE_BALANCE = "NO_AVAILABLE_BALANCE"
EARNINGS_VALIDATION_FAILED = "EARNINGS_VALIDATION_FAILED"
UNSAFE_SPLIT = "UNSAFE_SPLIT"
INVALID_TRANSITION = "INVALID_TRANSITION"


class AppError(Exception):
    status_code = 400
    code = INVALID_INPUT

    def __init__(self, message, status_code=None, code=None, errors=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.errors = list(errors or [])

    def to_dict(self):
        payload = {"error": self.message, "code": self.code}
        if self.errors:
            payload["errors"] = self.errors
        return payload


def register_error_handlers(app):
    @app.errorhandler(AppError)
    def handle_app_error(err):
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(_err):
        app.logger.warning("Database integrity error")
        return jsonify({"error": "Conflict. Resource already exists.", "code": "CONFLICT"}), 409

    @app.errorhandler(400)
    def bad_request(_err):
        return jsonify({"error": "Bad request", "code": INVALID_INPUT}), 400

    @app.errorhandler(401)
    def unauthorized(_err):
        return jsonify({"error": "Unauthorized", "code": "UNAUTHORIZED"}), 401

    @app.errorhandler(403)
    def forbidden(_err):
        return jsonify({"error": "Forbidden", "code": "FORBIDDEN"}), 403

    @app.errorhandler(404)
    def not_found(_err):
        return jsonify({"error": "Not found", "code": NOT_FOUND}), 404

    @app.errorhandler(405)
    def method_not_allowed(_err):
        return jsonify({"error": "Method not allowed", "code": "METHOD_NOT_ALLOWED"}), 405

    @app.errorhandler(429)
    def rate_limited(_err):
        return jsonify({"error": "Too many requests", "code": "RATE_LIMITED"}), 429

    @app.errorhandler(500)
    def server_error(_err):
        app.logger.exception("Internal server error")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500
