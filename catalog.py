"""
Product catalog: create, read, list, update and delete.

slug and totalStock are persisted but always recomputed from name/sizes;
discountPercentage is only ever computed on the way out.
"""

import logging
import math
from typing import Any, Dict, List

from bson import ObjectId
from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, oid, serialize, utcnow
from errors import NotFoundError, ValidationError, first_error_message
from schemas import Product, discount_percentage, unwrap_tags

logger = logging.getLogger(__name__)

PRICE_FIELDS = ("realPrice", "discountedPrice")
DERIVED_FIELDS = {"_id", "id", "slug", "totalStock", "discountPercentage", "createdAt", "updatedAt"}
PRICE_INVARIANT_MESSAGE = "Discounted price cannot be greater than real price"

# snake_case attribute -> wire name, so either spelling can be patched
FIELD_ALIASES = {name: info.alias or name for name, info in Product.model_fields.items()}


def product_response(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(doc)
    out["discountPercentage"] = discount_percentage(doc.get("realPrice"), doc.get("discountedPrice"))
    return out


def coerce_price(value) -> float:
    """Best-effort number: missing, blank or non-numeric input becomes 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return 0.0
    return number if math.isfinite(number) else 0.0


def _validate(data: Dict[str, Any]) -> Product:
    try:
        return Product.model_validate(data)
    except SchemaError as exc:
        raise ValidationError(first_error_message(exc))


def _duplicate_error(exc: DuplicateKeyError) -> ValidationError:
    key_pattern = (getattr(exc, "details", None) or {}).get("keyPattern") or {}
    if "sku" in key_pattern:
        message = "A product with this SKU already exists"
    elif "slug" in key_pattern:
        message = "A product with this name already exists"
    else:
        message = "A product with this name or SKU already exists"
    logger.warning("Rejected duplicate product: %s", exc)
    return ValidationError(message)


def create_product(db: Database, payload: Dict[str, Any]) -> Dict[str, Any]:
    data = {k: v for k, v in payload.items() if k not in DERIVED_FIELDS}
    product = _validate(data)
    try:
        product_id = create_document(db, "product", product.to_document())
    except DuplicateKeyError as exc:
        raise _duplicate_error(exc)
    logger.info("Created product %s (%s)", product_id, product.slug)
    return product_response(db["product"].find_one({"_id": ObjectId(product_id)}))


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    doc = db["product"].find_one({"_id": oid(product_id)})
    if not doc:
        raise NotFoundError("Product not found")
    return product_response(doc)


def list_products(db: Database) -> List[Dict[str, Any]]:
    return [product_response(doc) for doc in get_documents(db, "product")]


def _normalize_changes(payload: Dict[str, Any]) -> Dict[str, Any]:
    changes = {}
    for key, value in payload.items():
        key = FIELD_ALIASES.get(key, key)
        if key in DERIVED_FIELDS:
            continue
        changes[key] = value

    for field in PRICE_FIELDS:
        if field in changes:
            changes[field] = coerce_price(changes[field])

    if isinstance(changes.get("images"), list):
        changes["images"] = [
            img for img in changes["images"]
            if not isinstance(img, dict) or str(img.get("url") or "").strip()
        ]
    if "tags" in changes:
        changes["tags"] = unwrap_tags(changes["tags"])
    return changes


def _changed_fields(doc: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    # only submitted fields and what derives from them; stock moves concurrently
    updates = {key: doc[key] for key in changes if key in doc}
    if "name" in updates:
        updates["slug"] = doc["slug"]
    if "sizes" in updates:
        updates["totalStock"] = doc["totalStock"]
    return updates


def update_product(db: Database, product_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Partial replace of a product.

    Price fields that are sent but blank or non-numeric are stored as 0;
    price fields that are not sent keep their stored value. The merged
    record must still satisfy every product invariant, but only the sent
    fields (and slug/totalStock when they follow) are written back.
    """
    _id = oid(product_id)
    changes = _normalize_changes(payload)

    current = db["product"].find_one({"_id": _id})
    if not current:
        raise NotFoundError("Product not found")

    merged = {k: v for k, v in current.items() if k not in DERIVED_FIELDS}
    merged.update(changes)

    real, discounted = merged.get("realPrice"), merged.get("discountedPrice")
    if isinstance(real, (int, float)) and isinstance(discounted, (int, float)) and discounted > real:
        raise ValidationError(PRICE_INVARIANT_MESSAGE)

    product = _validate(merged)
    updates = _changed_fields(product.to_document(), changes)
    updates["updatedAt"] = utcnow()
    try:
        updated = db["product"].find_one_and_update(
            {"_id": _id},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError as exc:
        raise _duplicate_error(exc)
    if updated is None:
        raise NotFoundError("Product not found")
    logger.info("Updated product %s", product_id)
    return product_response(updated)


def delete_product(db: Database, product_id: str) -> Dict[str, Any]:
    """Remove a product by id.

    Answers with the same acknowledgement whether or not anything matched;
    deletedCount tells the two apart.
    """
    if not product_id:
        raise ValidationError("Product ID is required")
    result = db["product"].delete_one({"_id": oid(product_id)})
    logger.info("Deleted product %s (matched %d)", product_id, result.deleted_count)
    return {"message": "Product deleted successfully", "deletedCount": result.deleted_count}
