from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from . import lifecycle
from .db import USERS
from .errors import NotFoundError
from .extensions import mongo
from .helpers import (
    current_user_id,
    pagination_info,
    parse_pagination,
    to_json,
    to_object_id,
)

bp = Blueprint("users", __name__)


# =============================================================================
# CURRENT USER ENDPOINTS
# =============================================================================

@bp.route("/user/favorites", methods=["GET"])
@jwt_required()
def favorites():
    """Products the current user has favorited"""
    return jsonify(to_json(lifecycle.favorites_of(mongo.db, current_user_id()))), 200


@bp.route("/user/publications", methods=["GET"])
@jwt_required()
def publications():
    """Products published by the current user, newest first"""
    return jsonify(to_json(lifecycle.publications_of(mongo.db, current_user_id()))), 200


@bp.route("/user/orders", methods=["GET"])
@jwt_required()
def orders():
    """Completed sales where the current user is the seller"""
    return jsonify(to_json(lifecycle.orders_of(mongo.db, current_user_id()))), 200


@bp.route("/user/view-history", methods=["GET"])
@jwt_required()
def view_history():
    page, limit = parse_pagination(request.args)
    items, total = lifecycle.view_history_of(mongo.db, current_user_id(), page, limit)
    return jsonify({
        "history": to_json(items),
        "pagination": pagination_info(page, limit, total),
    }), 200


# =============================================================================
# PUBLIC PROFILE
# =============================================================================

@bp.route("/users/<user_id>", methods=["GET"])
def get_user(user_id):
    """Public profile: nickname and reputation"""
    user = mongo.db[USERS].find_one(
        {"_id": to_object_id(user_id, "user ID")},
        {"nickname": 1, "reputation": 1, "createdAt": 1},
    )
    if not user:
        raise NotFoundError("User not found.")
    return jsonify(to_json(user)), 200
