import datetime

from flask import Blueprint, current_app, jsonify, request
from pymongo.errors import PyMongoError

from .extensions import mongo

bp = Blueprint("system", __name__)

VERSION = "1.0.0"


# =============================================================================
# HEALTH CHECK ENDPOINT
# =============================================================================

@bp.route("/health", methods=["GET"])
def health_check():
    """API health check endpoint"""
    try:
        # Test database connection
        mongo.db.list_collection_names()
    except PyMongoError as e:
        current_app.logger.warning("Health check failed: %s", e)
        return jsonify({
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.datetime.utcnow().isoformat(),
        }), 503

    return jsonify({
        "status": "healthy",
        "timestamp": datetime.datetime.utcnow().isoformat(),
        "version": VERSION,
    }), 200


# =============================================================================
# API DOCUMENTATION ENDPOINT
# =============================================================================

@bp.route("/", methods=["GET"])
def api_documentation():
    """API documentation and available endpoints"""
    prefix = current_app.config["API_PREFIX"]
    endpoints = {
        "Authentication": {
            "POST /auth/register": "Create new user account",
            "POST /auth/login": "Login user and get JWT token",
            "GET /auth/me": "Get current user profile",
            "PUT /auth/me": "Update nickname or password",
        },
        "Products": {
            "GET /products": "List selling products (filters, sorting, pagination)",
            "POST /products": "Create listing with image (auth required)",
            "GET /products/{id}": "Get product detail",
            "GET /products/{id}/image": "Get product image",
            "PUT /products/{id}": "Update listing (owner only)",
            "PUT /products/{id}/status": "Mark as sold (owner only)",
            "POST /products/{id}/sell": "Mark as sold (owner only)",
            "PUT /products/{id}/view": "Record a view",
            "POST /products/{id}/favorite": "Toggle favorite",
            "POST /products/{id}/comments": "Add comment",
            "POST /products/{id}/evaluate": "Evaluate the seller of a sold product",
        },
        "User": {
            "GET /user/favorites": "Favorited products",
            "GET /user/publications": "Published products",
            "GET /user/orders": "Completed sales",
            "GET /user/view-history": "Recently viewed products",
            "GET /users/{id}": "Public profile",
        },
        "Admin": {
            "GET /admin/export/{users,products,orders}": "CSV export",
            "POST /admin/import/products": "CSV product import",
            "GET /admin/stats/daily-posts": "Listings per day",
            "GET /admin/stats/daily-transactions": "Sales per day",
            "GET /admin/stats/hot-categories-sales": "Sales per category",
            "POST /admin/reconcile": "Repair half-finished sales and evaluations",
            "POST /setadmin": "Grant or revoke admin (shared secret)",
        },
    }

    return jsonify({
        "API Documentation": "Campus Trade REST API",
        "version": VERSION,
        "base_url": request.host_url.rstrip("/") + prefix,
        "endpoints": endpoints,
        "authentication": {
            "type": "JWT Bearer Token",
            "header": "Authorization: Bearer <token>",
        },
    }), 200
