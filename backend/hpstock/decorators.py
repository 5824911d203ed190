# Overview: Request decorators for API routes.

from functools import wraps

from flask import current_app, jsonify

from .extensions import db
from .validation import StockError


def handle_stock_errors(f):
    """
    Translate service errors into JSON responses.

    - StockError subclasses -> {"error", "code"} with the error's http_status
    - anything else -> logged with traceback, 500

    The session is rolled back on both paths so a failed request never leaves
    pending state behind.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except StockError as e:
            db.session.rollback()
            return jsonify({"error": str(e), "code": e.code}), e.http_status
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Unhandled error in %s", f.__name__)
            return jsonify({"error": "Internal server error", "code": "internal_error"}), 500

    return decorated
