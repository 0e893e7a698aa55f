import hmac
from functools import wraps

from flask import abort, current_app, request


def token_required(func):
    @wraps(func)
    def inner(*args, **kwargs):
        expected = current_app.config.get("FINANCIALS_API_TOKEN")
        if not expected:
            abort(403)
        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token:
            abort(401)
        if not hmac.compare_digest(token.strip(), expected):
            abort(403)
        return func(*args, **kwargs)

    return inner


def request_actor():
    return (request.headers.get("X-Actor-Id") or "").strip() or None
