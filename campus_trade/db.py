from pymongo import ASCENDING, DESCENDING

USERS = "users"
PRODUCTS = "products"
ORDERS = "orders"


def ensure_indexes(db):
    """Create the indexes the lifecycle operations depend on.

    ``users.studentId`` and ``orders.product`` are unique: the first rejects
    duplicate registrations, the second makes a second order for the same
    product impossible.
    """
    db[USERS].create_index([("studentId", ASCENDING)], unique=True)
    db[ORDERS].create_index([("product", ASCENDING)], unique=True)
    db[ORDERS].create_index([("seller", ASCENDING), ("transactionDate", DESCENDING)])
    db[PRODUCTS].create_index([("status", ASCENDING), ("createdAt", DESCENDING)])
    db[PRODUCTS].create_index([("owner", ASCENDING)])
    db[PRODUCTS].create_index([("favoritedBy", ASCENDING)])
