"""CSV export/import and aggregate statistics for the admin console."""
import csv
import datetime
import io
import logging

from bson import ObjectId
from pymongo.errors import BulkWriteError

from . import auth, lifecycle
from .db import ORDERS, PRODUCTS, USERS
from .errors import ValidationError

logger = logging.getLogger(__name__)

BOM = "\ufeff"

USER_COLUMNS = [
    "_id", "studentId", "nickname", "isAdmin",
    "reputation.good", "reputation.neutral", "reputation.bad", "createdAt",
]
PRODUCT_COLUMNS = [
    "商品ID", "标题", "价格", "分类", "校区", "新旧程度", "状态", "浏览量", "发布者", "发布时间",
]
ORDER_COLUMNS = ["订单ID", "商品标题", "成交价格", "卖家", "成交日期"]

IMPORT_COLUMNS = ("title", "description", "price", "category", "campus", "condition")


def _cell(value):
    if value is None:
        return ""
    if isinstance(value, datetime.datetime):
        return value.isoformat()
    if isinstance(value, ObjectId):
        return str(value)
    return value


def _csv_text(header, rows):
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    for row in rows:
        writer.writerow([_cell(value) for value in row])
    # BOM so spreadsheet tools pick UTF-8 for the Chinese headers
    return BOM + buffer.getvalue()


def _nicknames(db, user_ids):
    users = db[USERS].find({"_id": {"$in": list(set(user_ids))}}, {"nickname": 1})
    return {u["_id"]: u.get("nickname") for u in users}


# =============================================================================
# EXPORT
# =============================================================================

def export_users(db):
    """CSV of all users (never the password hash), or None when empty."""
    users = list(db[USERS].find({}, auth.PRIVATE_USER_FIELDS))
    if not users:
        return None
    rows = []
    for user in users:
        reputation = user.get("reputation") or {}
        rows.append([
            user["_id"],
            user.get("studentId"),
            user.get("nickname"),
            user.get("isAdmin", False),
            reputation.get("good", 0),
            reputation.get("neutral", 0),
            reputation.get("bad", 0),
            user.get("createdAt"),
        ])
    return _csv_text(USER_COLUMNS, rows)


def export_products(db):
    products = list(db[PRODUCTS].find({}, lifecycle.DETAIL_PROJECTION))
    if not products:
        return None
    owners = _nicknames(db, [p.get("owner") for p in products])
    rows = [
        [
            product["_id"],
            product.get("title"),
            product.get("price"),
            product.get("category"),
            product.get("campus"),
            product.get("condition"),
            product.get("status"),
            product.get("viewCount", 0),
            owners.get(product.get("owner")),
            product.get("createdAt"),
        ]
        for product in products
    ]
    return _csv_text(PRODUCT_COLUMNS, rows)


def export_orders(db):
    orders = list(db[ORDERS].find())
    if not orders:
        return None
    sellers = _nicknames(db, [o.get("seller") for o in orders])
    titles = {
        p["_id"]: p.get("title")
        for p in db[PRODUCTS].find({"_id": {"$in": [o.get("product") for o in orders]}}, {"title": 1})
    }
    rows = [
        [
            order["_id"],
            titles.get(order.get("product")),
            order.get("price"),
            sellers.get(order.get("seller")),
            order.get("transactionDate"),
        ]
        for order in orders
    ]
    return _csv_text(ORDER_COLUMNS, rows)


# =============================================================================
# IMPORT
# =============================================================================

def import_products(db, owner_id, text):
    """Insert the valid rows of a product CSV as new selling listings.

    Invalid rows are reported back and skipped. Imported listings carry no
    image. Rows rejected by the store during the bulk insert are logged and
    counted, not raised.
    """
    reader = csv.DictReader(io.StringIO(text.lstrip(BOM)))
    missing = [c for c in lifecycle.REQUIRED_FIELDS if c not in (reader.fieldnames or [])]
    if missing:
        raise ValidationError("CSV is missing columns: " + ", ".join(missing))

    documents = []
    errors = []
    for row_number, row in enumerate(reader, start=2):
        fields = {key: row.get(key) for key in IMPORT_COLUMNS if key in row}
        try:
            listing = lifecycle.validate_listing(fields)
        except ValidationError as exc:
            errors.append({"row": row_number, "message": exc.message})
            continue
        documents.append(lifecycle.new_product_document(listing, owner_id))

    inserted = 0
    failed = 0
    if documents:
        try:
            result = db[PRODUCTS].insert_many(documents, ordered=False)
            inserted = len(result.inserted_ids)
        except BulkWriteError as exc:
            inserted = exc.details.get("nInserted", 0)
            failed = len(documents) - inserted
            logger.warning("Product import: %d of %d rows rejected by the store", failed, len(documents))

    logger.info("Product import by %s: %d inserted, %d invalid", owner_id, inserted, len(errors))
    return {"inserted": inserted, "failed": failed, "skipped": len(errors), "errors": errors}


# =============================================================================
# STATISTICS
# =============================================================================

def _daily_counts(collection, date_field):
    return list(collection.aggregate([
        {
            "$group": {
                "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": f"${date_field}"}},
                "count": {"$sum": 1},
            }
        },
        {"$sort": {"_id": 1}},
    ]))


def daily_posts(db):
    return _daily_counts(db[PRODUCTS], "createdAt")


def daily_transactions(db):
    return _daily_counts(db[ORDERS], "transactionDate")


def hot_categories(db):
    """Number of completed sales per category, best sellers first."""
    return list(db[ORDERS].aggregate([
        {
            "$lookup": {
                "from": PRODUCTS,
                "localField": "product",
                "foreignField": "_id",
                "as": "productDetails",
            }
        },
        {"$unwind": "$productDetails"},
        {"$group": {"_id": "$productDetails.category", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ]))
