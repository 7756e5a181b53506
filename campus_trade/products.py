from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from . import lifecycle
from .errors import ValidationError
from .extensions import mongo
from .helpers import (
    current_user_id,
    pagination_info,
    parse_pagination,
    to_json,
    to_object_id,
)

bp = Blueprint("products", __name__)


def _request_fields():
    """Listing fields from a multipart form or a JSON body."""
    if request.form:
        return request.form.to_dict()
    return request.get_json(silent=True) or {}


def _uploaded_image():
    upload = request.files.get("imageFile")
    if upload is None or not upload.filename:
        return None
    return {"data": upload.read(), "contentType": upload.mimetype}


def _attempts():
    return current_app.config["STORE_RETRY_ATTEMPTS"]


# =============================================================================
# PRODUCT ENDPOINTS
# =============================================================================

@bp.route("/products", methods=["GET"])
def list_products():
    """
    Get selling products with optional filtering, sorting and pagination
    Query: category, search, campus, condition, priceMin, priceMax,
           sortBy, order, page, limit
    """
    page, limit = parse_pagination(request.args)
    sort_by = request.args.get("sortBy", "createdAt")
    order = request.args.get("order", "desc")

    products, total = lifecycle.list_products(
        mongo.db, request.args, sort_by=sort_by, order=order, page=page, limit=limit
    )
    return jsonify({
        "products": to_json(products),
        "pagination": pagination_info(page, limit, total),
    }), 200


@bp.route("/products", methods=["POST"])
@jwt_required()
def create_product():
    """Create new listing (multipart: listing fields + imageFile)"""
    product_id = lifecycle.create_listing(
        mongo.db, current_user_id(), _request_fields(), _uploaded_image()
    )
    return jsonify({
        "message": "Product created successfully.",
        "productId": str(product_id),
    }), 201


@bp.route("/products/<product_id>", methods=["GET"])
def product_detail(product_id):
    """Get product detail (image served separately)"""
    product = lifecycle.get_product(mongo.db, to_object_id(product_id, "product ID"), _attempts())
    return jsonify(to_json(product)), 200


@bp.route("/products/<product_id>", methods=["PUT", "POST"])
@jwt_required()
def update_product(product_id):
    """Update listing (owner only)"""
    product = lifecycle.update_listing(
        mongo.db,
        to_object_id(product_id, "product ID"),
        current_user_id(),
        _request_fields(),
        image=_uploaded_image(),
        allow_sold=current_app.config["ALLOW_SOLD_LISTING_EDITS"],
    )
    return jsonify({
        "message": "Product updated successfully.",
        "product": to_json(product),
    }), 200


@bp.route("/products/<product_id>/image", methods=["GET"])
def product_image(product_id):
    data, content_type = lifecycle.get_image(mongo.db, to_object_id(product_id, "product ID"))
    return current_app.response_class(data, mimetype=content_type)


# =============================================================================
# LIFECYCLE ENDPOINTS
# =============================================================================

@bp.route("/products/<product_id>/status", methods=["PUT"])
@jwt_required()
def update_status(product_id):
    """Mark a product as sold; a sold product cannot go back to selling"""
    data = request.get_json(silent=True) or {}
    if data.get("status") != lifecycle.SOLD:
        raise ValidationError("status can only be set to 'sold'")
    return _sell(product_id)


@bp.route("/products/<product_id>/sell", methods=["POST"])
@jwt_required()
def sell_product(product_id):
    return _sell(product_id)


def _sell(product_id):
    order = lifecycle.mark_sold(
        mongo.db, to_object_id(product_id, "product ID"), current_user_id(), _attempts()
    )
    return jsonify({
        "message": "Product status updated successfully.",
        "order": to_json(order),
    }), 200


@bp.route("/products/<product_id>/view", methods=["PUT"])
@jwt_required()
def record_view(product_id):
    view_count = lifecycle.record_view(
        mongo.db,
        to_object_id(product_id, "product ID"),
        current_user_id(),
        history_limit=current_app.config["VIEW_HISTORY_LIMIT"],
    )
    return jsonify({"viewCount": view_count}), 200


@bp.route("/products/<product_id>/favorite", methods=["POST"])
@jwt_required()
def toggle_favorite(product_id):
    result = lifecycle.toggle_favorite(
        mongo.db, to_object_id(product_id, "product ID"), current_user_id()
    )
    return jsonify(result), 200


@bp.route("/products/<product_id>/comments", methods=["POST"])
@jwt_required()
def add_comment(product_id):
    data = request.get_json(silent=True) or {}
    comments = lifecycle.add_comment(
        mongo.db, to_object_id(product_id, "product ID"), current_user_id(), data.get("content")
    )
    return jsonify(to_json(comments)), 201


@bp.route("/products/<product_id>/evaluate", methods=["POST"])
@jwt_required()
def evaluate_seller(product_id):
    """Evaluate the seller of a sold product: type is good, neutral or bad"""
    data = request.get_json(silent=True) or {}
    reputation = lifecycle.evaluate_seller(
        mongo.db,
        to_object_id(product_id, "product ID"),
        current_user_id(),
        data.get("type"),
        _attempts(),
    )
    return jsonify({
        "message": "Evaluation submitted successfully.",
        "reputation": reputation,
    }), 200
