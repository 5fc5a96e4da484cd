"""
Order placement and history.

Orders are stored as submitted: line items keep the name and price the
client saw, and totals are not recomputed. Stock bookkeeping is a separate
step, switched on with ORDER_STOCK_DECREMENT.
"""

import logging
import os
from typing import Any, Dict, List

from bson import ObjectId
from pymongo.database import Database

from database import create_document, serialize
from errors import ValidationError
from schemas import Order, OrderCreate, OrderItem

logger = logging.getLogger(__name__)


def stock_decrement_enabled() -> bool:
    return os.getenv("ORDER_STOCK_DECREMENT", "").strip().lower() in ("1", "true", "yes", "on")


def create_order(db: Database, user_id: ObjectId, payload: OrderCreate) -> Dict[str, Any]:
    if not payload.order_items:
        raise ValidationError("No order items")

    order = Order.model_validate({**payload.model_dump(), "user": str(user_id)})
    doc = order.model_dump(by_alias=True)
    doc["user"] = user_id
    for item in doc["orderItems"]:
        item["product"] = ObjectId(item["product"])

    order_id = create_document(db, "order", doc)
    logger.info("Created order %s for user %s (%d items)", order_id, user_id, len(payload.order_items))

    if stock_decrement_enabled():
        decrement_stock(db, payload.order_items)

    return serialize(db["order"].find_one({"_id": ObjectId(order_id)}))


def decrement_stock(db: Database, items: List[OrderItem]) -> None:
    """Take ordered quantities out of the matching size's stock.

    Each decrement only applies while the size still has enough stock, so
    stock never goes negative; a shortfall is logged and skipped.
    """
    products = db["product"]
    for item in items:
        pid = ObjectId(item.product)
        product = products.find_one({"_id": pid}, {"sizes": 1})
        sizes = (product or {}).get("sizes") or []
        index = next((i for i, s in enumerate(sizes) if s.get("name") == item.size), None)
        if index is None:
            logger.warning("No size %s on product %s, stock left unchanged", item.size, pid)
            continue
        path = f"sizes.{index}"
        result = products.update_one(
            {"_id": pid, f"{path}.name": item.size, f"{path}.stock": {"$gte": item.quantity}},
            {"$inc": {f"{path}.stock": -item.quantity, "totalStock": -item.quantity}},
        )
        if not result.matched_count:
            logger.warning("Insufficient stock for product %s size %s (wanted %d)", pid, item.size, item.quantity)


def list_orders(db: Database, user_id: ObjectId) -> List[Dict[str, Any]]:
    cursor = db["order"].find({"user": user_id}).sort("createdAt", -1)
    return [serialize(doc) for doc in cursor]
