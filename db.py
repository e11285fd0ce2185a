import os

from pymongo import MongoClient, ASCENDING, DESCENDING

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "plugng")

client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=5000, tz_aware=False)
db = client[MONGO_DB_NAME]

NOTIFICATION_TTL_SECONDS = 30 * 24 * 60 * 60


def ensure_indexes():
    """
    Create the unique and lookup indexes the API relies on.
    Safe to call repeatedly.
    """
    db["users"].create_index([("email", ASCENDING)], unique=True)
    db["users"].create_index([("phone", ASCENDING)], unique=True)
    db["users"].create_index([("role", ASCENDING), ("status", ASCENDING)])

    db["products"].create_index([("slug", ASCENDING)], unique=True)
    db["products"].create_index([("category", ASCENDING), ("status", ASCENDING)])
    db["products"].create_index([("sales_count", DESCENDING)])

    db["categories"].create_index([("slug", ASCENDING)], unique=True)
    db["categories"].create_index([("parent", ASCENDING), ("order", ASCENDING)])

    db["orders"].create_index([("order_number", ASCENDING)], unique=True)
    db["orders"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["orders"].create_index([("payment_reference", ASCENDING)])

    db["coupons"].create_index([("code", ASCENDING)], unique=True)
    db["carts"].create_index([("user_id", ASCENDING)], unique=True)
    db["wishlists"].create_index([("user_id", ASCENDING)], unique=True)
    db["balances"].create_index([("user_id", ASCENDING)], unique=True)
    db["transactions"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["transactions"].create_index([("reference", ASCENDING)])
    db["wallet_topups"].create_index([("user_id", ASCENDING)])

    db["reviews"].create_index(
        [("user_id", ASCENDING), ("product_id", ASCENDING), ("order_id", ASCENDING)],
        unique=True,
    )
    db["reviews"].create_index([("product_id", ASCENDING), ("status", ASCENDING)])

    db["tickets"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["tickets"].create_index([("status", ASCENDING), ("updated_at", DESCENDING)])

    db["notifications"].create_index([("recipient", ASCENDING), ("created_at", DESCENDING)])
    db["notifications"].create_index(
        [("created_at", ASCENDING)], expireAfterSeconds=NOTIFICATION_TTL_SECONDS
    )

    db["settings"].create_index([("category", ASCENDING), ("key", ASCENDING)], unique=True)
    db["newsletter"].create_index([("email", ASCENDING)], unique=True)

    db["admin_activities"].create_index([("created_at", DESCENDING)])
    db["admin_activities"].create_index([("admin_id", ASCENDING), ("created_at", DESCENDING)])
    db["admin_activities"].create_index([("resource", ASCENDING), ("action", ASCENDING)])

    db["login_logs"].create_index([("created_at", DESCENDING)])
