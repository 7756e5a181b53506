import hmac

from flask import Blueprint, current_app, jsonify, request
from pymongo import ReturnDocument

from . import lifecycle, reporting
from .auth import admin_required
from .db import USERS
from .errors import AuthorizationError, NotFoundError, ValidationError
from .extensions import mongo
from .helpers import current_user_id, to_json

bp = Blueprint("admin", __name__)


def _csv_response(text, filename):
    if text is None:
        return jsonify({"message": "没有数据可导出."}), 200
    response = current_app.response_class(text, mimetype="text/csv")
    response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return response


# =============================================================================
# EXPORT / IMPORT ENDPOINTS
# =============================================================================

@bp.route("/admin/export/users", methods=["GET"])
@admin_required
def export_users():
    return _csv_response(reporting.export_users(mongo.db), "all_users.csv")


@bp.route("/admin/export/products", methods=["GET"])
@admin_required
def export_products():
    return _csv_response(reporting.export_products(mongo.db), "all_products.csv")


@bp.route("/admin/export/orders", methods=["GET"])
@admin_required
def export_orders():
    return _csv_response(reporting.export_orders(mongo.db), "all_orders.csv")


@bp.route("/admin/import/products", methods=["POST"])
@admin_required
def import_products():
    """Import listings from an uploaded CSV (multipart field 'file')"""
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("No CSV file uploaded.")
    try:
        text = upload.read().decode("utf-8")
    except UnicodeDecodeError:
        raise ValidationError("CSV file must be UTF-8 encoded.")

    summary = reporting.import_products(mongo.db, current_user_id(), text)
    return jsonify(summary), 201 if summary["inserted"] else 200


# =============================================================================
# STATISTICS ENDPOINTS
# =============================================================================

@bp.route("/admin/stats/daily-posts", methods=["GET"])
@admin_required
def daily_posts():
    return jsonify(reporting.daily_posts(mongo.db)), 200


@bp.route("/admin/stats/daily-transactions", methods=["GET"])
@admin_required
def daily_transactions():
    return jsonify(reporting.daily_transactions(mongo.db)), 200


@bp.route("/admin/stats/hot-categories-sales", methods=["GET"])
@admin_required
def hot_categories():
    return jsonify(reporting.hot_categories(mongo.db)), 200


# =============================================================================
# MAINTENANCE ENDPOINTS
# =============================================================================

@bp.route("/admin/reconcile", methods=["POST"])
@admin_required
def reconcile():
    """Finish sales and evaluations left half-applied by failed requests"""
    result = lifecycle.reconcile_all(mongo.db, current_app.config["STORE_RETRY_ATTEMPTS"])
    return jsonify(result), 200


@bp.route("/setadmin", methods=["POST"])
def set_admin():
    """
    Grant or revoke the admin flag
    Required fields: studentId, isAdmin (bool), secretKey
    """
    data = request.get_json(silent=True) or {}
    expected = current_app.config.get("ADMIN_SECRET_KEY") or ""
    if not expected or not hmac.compare_digest(str(data.get("secretKey") or "").encode(), expected.encode()):
        raise AuthorizationError("Invalid secret key.")

    student_id = data.get("studentId")
    if not student_id or not isinstance(data.get("isAdmin"), bool):
        raise ValidationError("studentId and boolean isAdmin are required")

    user = mongo.db[USERS].find_one_and_update(
        {"studentId": str(student_id)},
        {"$set": {"isAdmin": data["isAdmin"]}},
        projection={"studentId": 1, "nickname": 1, "isAdmin": 1},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise NotFoundError(f'User "{student_id}" not found.')

    current_app.logger.warning("Admin flag for %s set to %s", student_id, data["isAdmin"])
    return jsonify({"message": "Admin flag updated.", "user": to_json(user)}), 200
