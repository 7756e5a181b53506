import datetime

from bson import ObjectId
from bson.errors import InvalidId
from flask_jwt_extended import get_jwt_identity

from .errors import AuthenticationError, ValidationError

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def to_json(data):
    """Convert MongoDB documents to JSON-serializable format"""
    if isinstance(data, list):
        return [to_json(item) for item in data]
    if isinstance(data, dict):
        return {key: to_json(value) for key, value in data.items()}
    if isinstance(data, ObjectId):
        return str(data)
    if isinstance(data, datetime.datetime):
        return data.isoformat()
    return data


def validate_object_id(id_string):
    """Validate if string is a valid ObjectId"""
    try:
        ObjectId(id_string)
        return True
    except (InvalidId, TypeError):
        return False


def to_object_id(id_string, label="ID"):
    if not validate_object_id(id_string):
        raise ValidationError(f"Invalid {label}")
    return ObjectId(id_string)


def current_user_id():
    """ObjectId of the authenticated caller (requires @jwt_required)."""
    identity = get_jwt_identity()
    if not validate_object_id(identity):
        raise AuthenticationError("Invalid token identity")
    return ObjectId(identity)


def parse_pagination(args, default_limit=20, max_limit=100):
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")
    return page, min(limit, max_limit)


def pagination_info(page, limit, total):
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
    }
