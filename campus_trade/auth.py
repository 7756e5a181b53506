import datetime
from functools import wraps

from flask import Blueprint, jsonify, request
from flask_jwt_extended import create_access_token, jwt_required
from pymongo.errors import DuplicateKeyError
from werkzeug.security import check_password_hash, generate_password_hash

from .db import USERS
from .errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from .extensions import jwt, mongo
from .helpers import current_user_id, to_json

bp = Blueprint("auth", __name__)

PRIVATE_USER_FIELDS = {
    "passwordHash": 0,
    "viewHistory": 0,
    "viewHistoryVersion": 0,
    "evaluationKeys": 0,
}


# =============================================================================
# TOKEN HANDLING
# =============================================================================

@jwt.unauthorized_loader
def missing_token(reason):
    return jsonify({"message": "No token provided!"}), 401


@jwt.invalid_token_loader
def invalid_token(reason):
    return jsonify({"message": "Unauthorized!"}), 401


@jwt.expired_token_loader
def expired_token(jwt_header, jwt_payload):
    return jsonify({"message": "Token has expired"}), 401


def admin_required(fn):
    """Require a valid token whose user is currently flagged as admin."""
    @wraps(fn)
    @jwt_required()
    def wrapper(*args, **kwargs):
        user = mongo.db[USERS].find_one({"_id": current_user_id()}, {"isAdmin": 1})
        if not user or not user.get("isAdmin"):
            raise AuthorizationError("Require Admin Role!")
        return fn(*args, **kwargs)
    return wrapper


# =============================================================================
# AUTHENTICATION ENDPOINTS
# =============================================================================

@bp.route("/auth/register", methods=["POST"])
def register():
    """
    Create a new user account
    Required fields: studentId, nickname, password
    """
    data = request.get_json(silent=True) or {}

    for field in ("studentId", "nickname", "password"):
        if not str(data.get(field) or "").strip():
            raise ValidationError(f"{field} is required")

    student_id = str(data["studentId"]).strip()
    if mongo.db[USERS].find_one({"studentId": student_id}, {"_id": 1}):
        raise ConflictError("Student ID is already registered.")

    now = datetime.datetime.utcnow()
    user = {
        "studentId": student_id,
        "nickname": str(data["nickname"]).strip(),
        "passwordHash": generate_password_hash(str(data["password"])),
        "isAdmin": False,
        "reputation": {"good": 0, "neutral": 0, "bad": 0},
        "viewHistory": [],
        "evaluationKeys": [],
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        result = mongo.db[USERS].insert_one(user)
    except DuplicateKeyError:
        raise ConflictError("Student ID is already registered.")

    return jsonify({
        "message": "User was registered successfully!",
        "userId": str(result.inserted_id),
    }), 201


@bp.route("/auth/login", methods=["POST"])
def login():
    """
    Authenticate user and return JWT token
    Required fields: studentId, password
    """
    data = request.get_json(silent=True) or {}
    if not data.get("studentId") or not data.get("password"):
        raise ValidationError("studentId and password are required")

    user = mongo.db[USERS].find_one({"studentId": str(data["studentId"]).strip()})
    if not user:
        raise NotFoundError("User Not found.")

    if not check_password_hash(user["passwordHash"], str(data["password"])):
        raise AuthenticationError("Invalid Password!")

    token = create_access_token(identity=str(user["_id"]))

    return jsonify({
        "id": str(user["_id"]),
        "studentId": user["studentId"],
        "nickname": user["nickname"],
        "isAdmin": user.get("isAdmin", False),
        "accessToken": token,
    }), 200


@bp.route("/auth/me", methods=["GET", "PUT"])
@jwt_required()
def me():
    """
    GET: Get current user profile
    PUT: Update nickname and/or password (password change needs currentPassword)
    """
    user_id = current_user_id()
    user = mongo.db[USERS].find_one({"_id": user_id})
    if not user:
        raise NotFoundError("User not found.")

    if request.method == "GET":
        for field in PRIVATE_USER_FIELDS:
            user.pop(field, None)
        return jsonify(to_json(user)), 200

    data = request.get_json(silent=True) or {}
    update_data = {}

    if "nickname" in data:
        nickname = str(data["nickname"] or "").strip()
        if not nickname:
            raise ValidationError("nickname must not be empty")
        update_data["nickname"] = nickname

    if data.get("password"):
        if not check_password_hash(user["passwordHash"], str(data.get("currentPassword") or "")):
            raise AuthenticationError("Current password is incorrect.")
        update_data["passwordHash"] = generate_password_hash(str(data["password"]))

    if update_data:
        update_data["updatedAt"] = datetime.datetime.utcnow()
        mongo.db[USERS].update_one({"_id": user_id}, {"$set": update_data})

    return jsonify({"message": "Profile updated successfully"}), 200
