"""
User accounts, carts and wishlists.

Cart and wishlist writes are single conditional updates on the user
document, so concurrent requests for the same user cannot duplicate a line
or lose one.
"""

import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import Identity, hash_password, verify_password
from catalog import product_response
from database import create_document, oid, serialize, utcnow
from errors import AuthError, NotFoundError, ValidationError, first_error_message
from schemas import CART_MAX_QUANTITY, CART_MIN_QUANTITY, ProfileUpdate, User

logger = logging.getLogger(__name__)

PROVIDER_PLACEHOLDER_PASSWORD = "identity-provider-no-password"
DEFAULT_PROFILE_IMAGE = "https://www.svgrepo.com/show/384670/account-avatar-profile-user.svg"
CART_PRODUCT_FIELDS = {
    "name": 1,
    "slug": 1,
    "images": 1,
    "realPrice": 1,
    "discountedPrice": 1,
    "sizes": 1,
    "isAvailable": 1,
}


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    return serialize({k: v for k, v in doc.items() if k != "password"})


# -------------------------------
# Registration and lookup
# -------------------------------

def register_user(db: Database, fullname: str, email: str, password: str) -> Dict[str, Any]:
    email = email.strip().lower()
    if db["user"].find_one({"email": email}):
        raise ValidationError("Email already registered")
    user = User(fullname=fullname, email=email, password=hash_password(password))
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise ValidationError("Email already registered")
    logger.info("Registered user %s", user_id)
    return db["user"].find_one({"_id": ObjectId(user_id)})


def authenticate_user(db: Database, email: str, password: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": (email or "").strip().lower()})
    if not user or not verify_password(password or "", user.get("password") or ""):
        raise AuthError("Invalid credentials")
    return user


def find_user(db: Database, identity: Identity) -> Optional[Dict[str, Any]]:
    if identity.id and ObjectId.is_valid(identity.id):
        user = db["user"].find_one({"_id": ObjectId(identity.id)})
        if user:
            return user
    return db["user"].find_one({"email": identity.email})


def resolve_user(db: Database, identity: Identity) -> Dict[str, Any]:
    """The user record behind a session.

    Accounts signed in through an external identity provider get their
    record created on first use.
    """
    user = find_user(db, identity)
    if user:
        return user
    if not identity.from_identity_provider:
        raise NotFoundError("User not found")

    try:
        doc = User(
            fullname=identity.name or "Store Customer",
            email=identity.email,
            password=PROVIDER_PLACEHOLDER_PASSWORD,
        ).model_dump(by_alias=True)
    except SchemaError as exc:
        raise ValidationError(first_error_message(exc))
    doc.pop("email")
    now = utcnow()
    doc["createdAt"] = now
    doc["updatedAt"] = now
    user = db["user"].find_one_and_update(
        {"email": identity.email},
        {"$setOnInsert": doc},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Created %s account for %s on first use", identity.provider, user["_id"])
    return user


# -------------------------------
# Profile
# -------------------------------

def profile_response(user: Dict[str, Any], identity: Identity) -> Dict[str, Any]:
    address = user.get("address") or {}
    return {
        "name": user.get("fullname") or identity.name,
        "email": user.get("email") or identity.email,
        "phone": user.get("phone") or "",
        "profileImage": identity.image or DEFAULT_PROFILE_IMAGE,
        "address": {
            "street": address.get("street", ""),
            "city": address.get("city", ""),
            "state": address.get("state", ""),
            "zipCode": address.get("zipCode", ""),
            "country": address.get("country", ""),
        },
    }


def update_profile(db: Database, user: Dict[str, Any], changes: ProfileUpdate) -> Dict[str, Any]:
    update: Dict[str, Any] = {"updatedAt": utcnow()}
    if changes.name is not None:
        update["fullname"] = changes.name
    if changes.email is not None:
        update["email"] = str(changes.email).lower()
    if changes.phone is not None:
        update["phone"] = changes.phone
    if changes.address is not None:
        update["address"] = changes.address.model_dump(by_alias=True)
    try:
        updated = db["user"].find_one_and_update(
            {"_id": user["_id"]},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise ValidationError("Email already registered")
    if updated is None:
        raise NotFoundError("User not found")
    return updated


# -------------------------------
# Cart
# -------------------------------

def _product_ref(product_id: Optional[str]) -> ObjectId:
    if not product_id:
        raise ValidationError("Product ID required")
    return oid(product_id)


def _check_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("Quantity must be a whole number")
    if not CART_MIN_QUANTITY <= quantity <= CART_MAX_QUANTITY:
        raise ValidationError(f"Quantity must be between {CART_MIN_QUANTITY} and {CART_MAX_QUANTITY}")


def get_cart(db: Database, user: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Cart lines joined with product data; lines whose product is gone are left out."""
    cart = (user or {}).get("cart") or []
    ids = [line["productId"] for line in cart]
    products = {doc["_id"]: doc for doc in db["product"].find({"_id": {"$in": ids}}, CART_PRODUCT_FIELDS)}
    items = []
    for line in cart:
        doc = products.get(line["productId"])
        if doc is None:
            continue
        items.append({
            "productId": str(line["productId"]),
            "quantity": line["quantity"],
            "product": product_response(doc),
        })
    return {"items": items}


def upsert_cart_item(db: Database, user_id: ObjectId, product_id: Optional[str], quantity) -> None:
    """Set the quantity for a product, adding the line if it is not there yet."""
    pid = _product_ref(product_id)
    _check_quantity(quantity)
    users = db["user"]
    # two rounds: a concurrent insert between the $set and the $push
    # makes the second $set match
    for _ in range(2):
        result = users.update_one(
            {"_id": user_id, "cart.productId": pid},
            {"$set": {"cart.$.quantity": quantity, "updatedAt": utcnow()}},
        )
        if result.matched_count:
            return
        result = users.update_one(
            {"_id": user_id, "cart.productId": {"$ne": pid}},
            {"$push": {"cart": {"productId": pid, "quantity": quantity}}, "$set": {"updatedAt": utcnow()}},
        )
        if result.matched_count:
            return
    raise NotFoundError("User not found")


def update_cart_quantity(db: Database, user_id: ObjectId, product_id: Optional[str], quantity) -> None:
    pid = _product_ref(product_id)
    _check_quantity(quantity)
    result = db["user"].update_one(
        {"_id": user_id, "cart.productId": pid},
        {"$set": {"cart.$.quantity": quantity, "updatedAt": utcnow()}},
    )
    if not result.matched_count:
        raise NotFoundError("Product not found in cart")


def remove_cart_item(db: Database, user_id: ObjectId, product_id: Optional[str]) -> None:
    pid = _product_ref(product_id)
    result = db["user"].update_one(
        {"_id": user_id, "cart.productId": pid},
        {"$pull": {"cart": {"productId": pid}}, "$set": {"updatedAt": utcnow()}},
    )
    if not result.matched_count:
        raise NotFoundError("Product not found in cart")


# -------------------------------
# Wishlist
# -------------------------------

def toggle_wishlist(db: Database, user_id: ObjectId, product_id: Optional[str]) -> Dict[str, bool]:
    pid = _product_ref(product_id)
    users = db["user"]
    result = users.update_one({"_id": user_id, "wishlist": pid}, {"$pull": {"wishlist": pid}})
    if not result.matched_count:
        result = users.update_one({"_id": user_id}, {"$addToSet": {"wishlist": pid}})
        if not result.matched_count:
            raise NotFoundError("User not found")
    return {"success": True}


def is_wishlisted(user: Optional[Dict[str, Any]], product_id: Optional[str]) -> bool:
    if not user or not product_id or not ObjectId.is_valid(product_id):
        return False
    return ObjectId(product_id) in (user.get("wishlist") or [])


def wishlist_products(db: Database, user: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    ids = (user or {}).get("wishlist") or []
    if not ids:
        return []
    products = {doc["_id"]: doc for doc in db["product"].find({"_id": {"$in": ids}})}
    return [product_response(products[pid]) for pid in ids if pid in products]
