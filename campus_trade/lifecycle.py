"""Product listing and transaction lifecycle.

A product starts out ``selling`` and can only move to ``sold``. Selling a
product writes an order, and evaluating the seller of a sold product bumps the
seller's reputation; both touch two documents. The product document is the
commit point in each case: a conditional single-document update claims the
transition and leaves a pending marker (``pendingSale`` or an entry in
``pendingEvaluations``) on the product, then the second write is applied
idempotently and the marker removed. A marker that outlives its request is
replayed by :func:`reconcile_product` the next time the product is touched.

Every operation takes the database handle and the caller's user id explicitly.
"""
import datetime
import logging
import math
import re

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from .db import ORDERS, PRODUCTS, USERS
from .errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)

SELLING = "selling"
SOLD = "sold"

CONDITIONS = ("全新", "九成新", "八成新", "轻微瑕疵")
EVALUATION_TYPES = ("good", "neutral", "bad")

LISTING_FIELDS = ("title", "description", "price", "category", "campus", "condition")
REQUIRED_FIELDS = ("title", "price", "category", "campus", "condition")
SORT_FIELDS = ("createdAt", "price", "viewCount", "title")

COMMENT_MAX_LENGTH = 500

# Image bytes and bookkeeping markers never leave the store through reads
DETAIL_PROJECTION = {"image": 0, "pendingSale": 0, "pendingEvaluations": 0}
SUMMARY_PROJECTION = {
    "title": 1,
    "price": 1,
    "category": 1,
    "campus": 1,
    "condition": 1,
    "status": 1,
    "viewCount": 1,
    "owner": 1,
    "createdAt": 1,
}


# =============================================================================
# VALIDATION
# =============================================================================

def _parse_price(value):
    if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
        raise ValidationError("price is required")
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise ValidationError("price must be a number")
    if math.isnan(price) or math.isinf(price):
        raise ValidationError("price must be a number")
    if price < 0:
        raise ValidationError("price must not be negative")
    return price


def validate_listing(fields, partial=False):
    """Return the cleaned listing fields found in ``fields``.

    With ``partial`` set, missing fields are skipped instead of reported, but
    fields that are present must still be valid.
    """
    cleaned = {}
    for field in LISTING_FIELDS:
        if field not in fields:
            if not partial and field in REQUIRED_FIELDS:
                raise ValidationError(f"{field} is required")
            continue

        if field == "price":
            cleaned["price"] = _parse_price(fields[field])
            continue

        value = fields[field]
        value = "" if value is None else str(value).strip()
        if not value and field in REQUIRED_FIELDS:
            raise ValidationError(f"{field} is required")
        if field == "condition" and value not in CONDITIONS:
            raise ValidationError("condition must be one of: " + ", ".join(CONDITIONS))
        cleaned[field] = value

    if not partial:
        cleaned.setdefault("description", "")
    return cleaned


def validate_image(image):
    if not image or not image.get("data"):
        raise ValidationError("No image file uploaded.")
    return {
        "data": image["data"],
        "contentType": image.get("contentType") or "application/octet-stream",
    }


# =============================================================================
# LISTINGS
# =============================================================================

def new_product_document(listing, owner_id, image=None):
    """Complete a validated listing into a fresh ``selling`` product document."""
    now = datetime.datetime.utcnow()
    document = dict(listing)
    if image is not None:
        document["image"] = image
    document.update({
        "status": SELLING,
        "viewCount": 0,
        "owner": owner_id,
        "comments": [],
        "favoritedBy": [],
        "evaluatedBy": [],
        "createdAt": now,
        "updatedAt": now,
    })
    return document


def create_listing(db, owner_id, fields, image):
    listing = validate_listing(fields)
    document = new_product_document(listing, owner_id, validate_image(image))

    try:
        result = db[PRODUCTS].insert_one(document)
    except PyMongoError as exc:
        raise StorageError(f"Could not save product: {exc}") from exc

    logger.info("Product %s listed by %s", result.inserted_id, owner_id)
    return result.inserted_id


def update_listing(db, product_id, caller_id, fields, image=None, allow_sold=False):
    """Replace listing fields (and optionally the image) on an owned product."""
    product = db[PRODUCTS].find_one({"_id": product_id}, {"owner": 1, "status": 1})
    if not product:
        raise NotFoundError("Product not found.")
    if product.get("owner") != caller_id:
        raise AuthorizationError("Forbidden: You are not the owner of this product.")
    if product.get("status") == SOLD and not allow_sold:
        raise ConflictError("Sold listings can no longer be edited.")

    changes = validate_listing(fields, partial=True)
    if image is not None:
        changes["image"] = validate_image(image)
    if not changes:
        raise ValidationError("No updatable fields supplied")
    changes["updatedAt"] = datetime.datetime.utcnow()

    query = {"_id": product_id, "owner": caller_id}
    if not allow_sold:
        query["status"] = SELLING
    result = db[PRODUCTS].update_one(query, {"$set": changes})
    if result.matched_count == 0:
        # Only a concurrent sale can invalidate the checks above
        raise ConflictError("Sold listings can no longer be edited.")

    return db[PRODUCTS].find_one({"_id": product_id}, DETAIL_PROJECTION)


def _attach_owner_nicknames(db, products):
    owner_ids = list({p["owner"] for p in products if p.get("owner")})
    owners = {
        u["_id"]: u
        for u in db[USERS].find({"_id": {"$in": owner_ids}}, {"nickname": 1})
    }
    for product in products:
        owner = owners.get(product.get("owner"))
        product["owner"] = owner or {"_id": product.get("owner")}
    return products


def list_products(db, filters, sort_by="createdAt", order="desc", page=1, limit=20):
    """Selling products matching ``filters``; returns ``(products, total)``."""
    query = {"status": SELLING}

    for field in ("category", "campus", "condition"):
        if filters.get(field):
            query[field] = filters[field]

    search = filters.get("search")
    if search:
        query["title"] = {"$regex": re.escape(search), "$options": "i"}

    price_range = {}
    for key, operator in (("priceMin", "$gte"), ("priceMax", "$lte")):
        value = filters.get(key)
        if value not in (None, ""):
            try:
                price_range[operator] = float(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be a number")
    if price_range:
        query["price"] = price_range

    if sort_by not in SORT_FIELDS:
        raise ValidationError("sortBy must be one of: " + ", ".join(SORT_FIELDS))
    direction = 1 if order == "asc" else -1

    cursor = (
        db[PRODUCTS].find(query, DETAIL_PROJECTION)
        .sort(sort_by, direction)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    products = _attach_owner_nicknames(db, list(cursor))
    return products, db[PRODUCTS].count_documents(query)


def get_product(db, product_id, attempts=3):
    product = db[PRODUCTS].find_one({"_id": product_id}, {"image": 0})
    if not product:
        raise NotFoundError("Product not found.")
    if product.get("pendingSale") or product.get("pendingEvaluations"):
        reconcile_product(db, product, attempts)

    product.pop("pendingSale", None)
    product.pop("pendingEvaluations", None)
    product["owner"] = db[USERS].find_one(
        {"_id": product.get("owner")}, {"nickname": 1, "reputation": 1}
    ) or {"_id": product.get("owner")}
    product["favoritedCount"] = len(product.get("favoritedBy", []))
    return product


def get_image(db, product_id):
    product = db[PRODUCTS].find_one({"_id": product_id}, {"image": 1})
    image = (product or {}).get("image") or {}
    if not image.get("data"):
        raise NotFoundError("Image not found.")
    return image["data"], image.get("contentType") or "application/octet-stream"


# =============================================================================
# SALE
# =============================================================================

def _retry(operation, attempts, description):
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except PyMongoError as exc:
            if attempt == attempts:
                logger.error("Giving up on %s after %d attempts: %s", description, attempts, exc)
                raise StorageError(
                    f"Could not complete {description}; it will be reconciled on next access."
                ) from exc
            logger.warning("Retrying %s (attempt %d/%d): %s", description, attempt, attempts, exc)


def _complete_sale(db, product_id, pending, attempts):
    order = {
        "seller": pending["seller"],
        "price": pending["price"],
        "transactionDate": pending["soldAt"],
        "createdAt": pending["soldAt"],
    }

    def write():
        try:
            db[ORDERS].update_one({"product": product_id}, {"$setOnInsert": order}, upsert=True)
        except DuplicateKeyError:
            # A concurrent upsert for the same product got there first
            pass
        db[PRODUCTS].update_one({"_id": product_id}, {"$unset": {"pendingSale": ""}})

    _retry(write, attempts, f"sale of product {product_id}")
    return db[ORDERS].find_one({"product": product_id})


def mark_sold(db, product_id, caller_id, attempts=3):
    """Move an owned product from selling to sold and record its order."""
    for _ in range(max(1, attempts)):
        product = db[PRODUCTS].find_one(
            {"_id": product_id}, {"owner": 1, "status": 1, "price": 1, "pendingSale": 1}
        )
        if not product:
            raise NotFoundError("Product not found.")
        if product.get("owner") != caller_id:
            raise AuthorizationError("Forbidden: You are not the owner of this product.")
        if product.get("status") == SOLD:
            if product.get("pendingSale"):
                _complete_sale(db, product_id, product["pendingSale"], attempts)
            raise ConflictError("Product is already sold.")

        now = datetime.datetime.utcnow()
        pending = {"seller": caller_id, "price": product["price"], "soldAt": now}
        # The price is part of the filter so the order snapshots the price
        # the product actually had when it flipped to sold.
        claimed = db[PRODUCTS].find_one_and_update(
            {"_id": product_id, "owner": caller_id, "status": SELLING, "price": product["price"]},
            {"$set": {"status": SOLD, "soldAt": now, "updatedAt": now, "pendingSale": pending}},
            projection={"_id": 1},
        )
        if claimed:
            break
    else:
        raise ConflictError("Product changed while being sold, please retry.")

    logger.info("Product %s sold by %s for %s", product_id, caller_id, pending["price"])
    return _complete_sale(db, product_id, pending, attempts)


# =============================================================================
# BROWSING
# =============================================================================

def _push_history(db, user_id, product_id, history_limit):
    """Move ``product_id`` to the front of the user's view history.

    The whole list is rewritten under a compare-and-set on
    ``viewHistoryVersion``, so overlapping views of the same product never
    leave it in the history twice.
    """
    entry = {"product": product_id, "viewedAt": datetime.datetime.utcnow()}
    while True:
        user = db[USERS].find_one({"_id": user_id}, {"viewHistory": 1, "viewHistoryVersion": 1})
        if not user:
            return
        version = user.get("viewHistoryVersion")
        history = [e for e in user.get("viewHistory", []) if e.get("product") != product_id]
        history = ([entry] + history)[:history_limit]

        query = {"_id": user_id, "viewHistoryVersion": version}
        if version is None:
            query["viewHistoryVersion"] = {"$exists": False}
        result = db[USERS].update_one(
            query, {"$set": {"viewHistory": history}, "$inc": {"viewHistoryVersion": 1}}
        )
        if result.matched_count:
            return
        # another view rewrote the history first; start over from its result


def record_view(db, product_id, caller_id, history_limit=100):
    product = db[PRODUCTS].find_one_and_update(
        {"_id": product_id},
        {"$inc": {"viewCount": 1}},
        projection={"viewCount": 1},
        return_document=ReturnDocument.AFTER,
    )
    if not product:
        raise NotFoundError("Product not found.")

    _push_history(db, caller_id, product_id, history_limit)
    return product["viewCount"]


def toggle_favorite(db, product_id, caller_id):
    favorited = True
    product = db[PRODUCTS].find_one_and_update(
        {"_id": product_id, "favoritedBy": {"$ne": caller_id}},
        {"$addToSet": {"favoritedBy": caller_id}},
        projection={"favoritedBy": 1},
        return_document=ReturnDocument.AFTER,
    )
    if product is None:
        favorited = False
        product = db[PRODUCTS].find_one_and_update(
            {"_id": product_id, "favoritedBy": caller_id},
            {"$pull": {"favoritedBy": caller_id}},
            projection={"favoritedBy": 1},
            return_document=ReturnDocument.AFTER,
        )
    if product is None:
        if not db[PRODUCTS].find_one({"_id": product_id}, {"_id": 1}):
            raise NotFoundError("Product not found.")
        raise ConflictError("Favorite changed concurrently, please retry.")

    return {"favorited": favorited, "favoritedCount": len(product.get("favoritedBy", []))}


def add_comment(db, product_id, caller_id, content):
    content = content.strip() if isinstance(content, str) else ""
    if not content:
        raise ValidationError("content is required")
    if len(content) > COMMENT_MAX_LENGTH:
        raise ValidationError(f"content must be at most {COMMENT_MAX_LENGTH} characters")

    user = db[USERS].find_one({"_id": caller_id}, {"nickname": 1})
    if not user:
        raise NotFoundError("User not found.")

    # nickname is a snapshot; renaming later does not touch old comments
    comment = {
        "user": caller_id,
        "nickname": user.get("nickname", ""),
        "content": content,
        "createdAt": datetime.datetime.utcnow(),
    }
    product = db[PRODUCTS].find_one_and_update(
        {"_id": product_id},
        {"$push": {"comments": comment}},
        projection={"comments": 1},
        return_document=ReturnDocument.AFTER,
    )
    if not product:
        raise NotFoundError("Product not found.")
    return product["comments"]


# =============================================================================
# EVALUATION
# =============================================================================

def _complete_evaluation(db, product_id, seller_id, pending, attempts):
    evaluator = pending["evaluator"]
    key = f"{product_id}:{evaluator}"

    # Keys stay on the seller for good: a replay racing a finished
    # evaluation must still find its key, or it would count twice.
    def write():
        db[USERS].update_one(
            {"_id": seller_id, "evaluationKeys": {"$ne": key}},
            {"$inc": {f"reputation.{pending['type']}": 1}, "$push": {"evaluationKeys": key}},
        )
        db[PRODUCTS].update_one(
            {"_id": product_id},
            {"$pull": {"pendingEvaluations": {"evaluator": evaluator}}},
        )

    _retry(write, attempts, f"evaluation of product {product_id}")


def evaluate_seller(db, product_id, caller_id, kind, attempts=3):
    """Rate the seller of a sold product; each buyer may do this once."""
    if kind not in EVALUATION_TYPES:
        raise ValidationError("Evaluation type must be one of: " + ", ".join(EVALUATION_TYPES))

    product = db[PRODUCTS].find_one(
        {"_id": product_id},
        {"owner": 1, "status": 1, "evaluatedBy": 1, "pendingSale": 1, "pendingEvaluations": 1},
    )
    if not product:
        raise NotFoundError("Product not found.")
    if product.get("pendingSale") or product.get("pendingEvaluations"):
        reconcile_product(db, product, attempts)
    if product.get("status") != SOLD:
        raise ConflictError("Product is not sold yet.")
    if product.get("owner") == caller_id:
        raise AuthorizationError("You cannot evaluate yourself.")
    if caller_id in product.get("evaluatedBy", []):
        raise ConflictError("You have already evaluated this sale.")

    pending = {"evaluator": caller_id, "type": kind, "at": datetime.datetime.utcnow()}
    result = db[PRODUCTS].update_one(
        {
            "_id": product_id,
            "status": SOLD,
            "owner": {"$ne": caller_id},
            "evaluatedBy": {"$ne": caller_id},
        },
        {"$addToSet": {"evaluatedBy": caller_id}, "$push": {"pendingEvaluations": pending}},
    )
    if result.modified_count == 0:
        raise ConflictError("You have already evaluated this sale.")

    _complete_evaluation(db, product_id, product["owner"], pending, attempts)
    logger.info("Seller %s rated %s by %s on product %s", product["owner"], kind, caller_id, product_id)

    seller = db[USERS].find_one({"_id": product["owner"]}, {"reputation": 1}) or {}
    return seller.get("reputation", {})


# =============================================================================
# RECONCILIATION
# =============================================================================

def reconcile_product(db, product, attempts=3):
    """Finish any sale or evaluation left half-applied on ``product``.

    ``product`` must carry ``_id``, ``owner`` and the pending markers.
    Returns the number of transitions completed.
    """
    repaired = 0
    if product.get("pendingSale"):
        _complete_sale(db, product["_id"], product["pendingSale"], attempts)
        repaired += 1
    for pending in product.get("pendingEvaluations") or []:
        _complete_evaluation(db, product["_id"], product["owner"], pending, attempts)
        repaired += 1
    if repaired:
        logger.warning("Reconciled %d pending transition(s) on product %s", repaired, product["_id"])
    return repaired


def reconcile_all(db, attempts=3):
    query = {
        "$or": [
            {"pendingSale": {"$exists": True}},
            {"pendingEvaluations.evaluator": {"$exists": True}},
        ]
    }
    projection = {"owner": 1, "pendingSale": 1, "pendingEvaluations": 1}
    products = 0
    transitions = 0
    for product in list(db[PRODUCTS].find(query, projection)):
        transitions += reconcile_product(db, product, attempts)
        products += 1
    return {"products": products, "transitions": transitions}


# =============================================================================
# PER-USER READS
# =============================================================================

def favorites_of(db, user_id):
    cursor = db[PRODUCTS].find({"favoritedBy": user_id}, DETAIL_PROJECTION).sort("createdAt", -1)
    return list(cursor)


def publications_of(db, user_id):
    cursor = db[PRODUCTS].find({"owner": user_id}, DETAIL_PROJECTION).sort("createdAt", -1)
    return list(cursor)


def orders_of(db, seller_id):
    pipeline = [
        {"$match": {"seller": seller_id}},
        {"$sort": {"transactionDate": -1}},
        {
            "$lookup": {
                "from": PRODUCTS,
                "localField": "product",
                "foreignField": "_id",
                "as": "productDetails",
            }
        },
    ]
    orders = []
    for order in db[ORDERS].aggregate(pipeline):
        details = order.pop("productDetails", [])
        order["productTitle"] = details[0].get("title") if details else None
        orders.append(order)
    return orders


def view_history_of(db, user_id, page=1, limit=20):
    """Most-recent-first page of the caller's view history; ``(items, total)``.

    Entries whose product has been deleted are left out of both the page and
    the total.
    """
    user = db[USERS].find_one({"_id": user_id}, {"viewHistory": 1})
    if not user:
        raise NotFoundError("User not found.")

    history = user.get("viewHistory", [])
    products = {
        p["_id"]: p
        for p in db[PRODUCTS].find(
            {"_id": {"$in": [e["product"] for e in history]}}, SUMMARY_PROJECTION
        )
    }
    items = [
        {"product": products[e["product"]], "viewedAt": e["viewedAt"]}
        for e in history
        if e["product"] in products
    ]
    return items[(page - 1) * limit:page * limit], len(items)
