import logging
import os
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import accounts
import catalog
import orders
from auth import (
    ADMIN_COOKIE,
    ADMIN_TTL,
    SESSION_TTL,
    TOKEN_COOKIE,
    Identity,
    check_admin_credentials,
    clear_session_cookie,
    current_identity,
    issue_token,
    require_admin,
    require_identity,
    session_claims,
    set_session_cookie,
)
from database import connection_status, get_db
from errors import AuthError, NotFoundError, StoreError, first_error_message
from schemas import (
    CartItemRequest,
    DeleteProductRequest,
    LoginRequest,
    OrderCreate,
    ProfileUpdate,
    RegisterRequest,
    WishlistToggleRequest,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Threadline API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": first_error_message(exc)})


@app.get("/")
def read_root():
    return {"brand": "Threadline", "message": "API is running"}


@app.get("/test")
def test_database():
    return connection_status()


# -------------------------------
# Products
# -------------------------------

@app.get("/api/products")
def list_products(db: Database = Depends(get_db)):
    return catalog.list_products(db)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return catalog.get_product(db, product_id)


@app.post("/api/products", status_code=201)
def create_product(
    payload: Dict[str, Any] = Body(...),
    _admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    product = catalog.create_product(db, payload)
    return {"message": "Product created successfully", "product": product}


@app.put("/api/products/{product_id}")
def update_product(
    product_id: str,
    payload: Dict[str, Any] = Body(...),
    _admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return catalog.update_product(db, product_id, payload)


# -------------------------------
# Admin
# -------------------------------

@app.post("/api/admin/deleteProduct")
def delete_product(
    payload: DeleteProductRequest,
    _admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return catalog.delete_product(db, payload.product_id)


@app.post("/api/admin/login")
def admin_login(payload: LoginRequest, response: Response):
    if not check_admin_credentials(payload.email, payload.password):
        raise AuthError("Invalid credentials")
    token = issue_token({"email": payload.email, "role": "admin"}, ADMIN_TTL)
    set_session_cookie(response, ADMIN_COOKIE, token, ADMIN_TTL)
    return {"message": "Login successful"}


@app.post("/api/admin/logout")
def admin_logout(response: Response):
    clear_session_cookie(response, ADMIN_COOKIE)
    return {"message": "Logged out"}


# -------------------------------
# Users and sessions
# -------------------------------

@app.post("/api/users/register", status_code=201)
def register(payload: RegisterRequest, response: Response, db: Database = Depends(get_db)):
    user = accounts.register_user(db, payload.fullname, payload.email, payload.password)
    set_session_cookie(response, TOKEN_COOKIE, issue_token(session_claims(user)), SESSION_TTL)
    return {"message": "User registered successfully", "user": accounts.public_user(user)}


@app.post("/api/users/login")
def login(payload: LoginRequest, response: Response, db: Database = Depends(get_db)):
    user = accounts.authenticate_user(db, payload.email, payload.password)
    set_session_cookie(response, TOKEN_COOKIE, issue_token(session_claims(user)), SESSION_TTL)
    return {"message": "Login successful", "user": accounts.public_user(user)}


@app.post("/api/users/logout")
def logout(response: Response):
    clear_session_cookie(response, TOKEN_COOKIE)
    return {"message": "Logged out"}


@app.get("/api/users/me")
def me(identity: Identity = Depends(require_identity)):
    return {"user": identity.model_dump(exclude={"provider"})}


@app.get("/api/users/profile")
def get_profile(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    user = accounts.find_user(db, identity)
    if user is None:
        raise NotFoundError("User not found")
    return accounts.profile_response(user, identity)


@app.put("/api/users/profile")
def update_profile(
    payload: ProfileUpdate,
    identity: Identity = Depends(require_identity),
    db: Database = Depends(get_db),
):
    user = accounts.resolve_user(db, identity)
    updated = accounts.update_profile(db, user, payload)
    return accounts.profile_response(updated, identity)


# -------------------------------
# Cart
# -------------------------------

@app.get("/api/users/cart")
def get_cart(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return accounts.get_cart(db, accounts.find_user(db, identity))


@app.post("/api/users/cart")
def add_to_cart(
    payload: CartItemRequest,
    identity: Identity = Depends(require_identity),
    db: Database = Depends(get_db),
):
    user = accounts.resolve_user(db, identity)
    accounts.upsert_cart_item(db, user["_id"], payload.product_id, payload.quantity)
    return {"success": True}


@app.patch("/api/users/cart")
def update_cart(
    payload: CartItemRequest,
    identity: Identity = Depends(require_identity),
    db: Database = Depends(get_db),
):
    user = accounts.resolve_user(db, identity)
    accounts.update_cart_quantity(db, user["_id"], payload.product_id, payload.quantity)
    return {"success": True}


@app.delete("/api/users/cart")
def remove_from_cart(
    productId: Optional[str] = None,
    identity: Identity = Depends(require_identity),
    db: Database = Depends(get_db),
):
    user = accounts.resolve_user(db, identity)
    accounts.remove_cart_item(db, user["_id"], productId)
    return {"success": True}


# -------------------------------
# Wishlist
# -------------------------------

@app.post("/api/users/wishlist")
def toggle_wishlist(
    payload: WishlistToggleRequest,
    identity: Identity = Depends(require_identity),
    db: Database = Depends(get_db),
):
    user = accounts.resolve_user(db, identity)
    return accounts.toggle_wishlist(db, user["_id"], payload.product_id)


@app.get("/api/users/wishlist")
def check_wishlist(request: Request, productId: Optional[str] = None, db: Database = Depends(get_db)):
    identity = current_identity(request)
    if identity is None or not productId:
        return {"isWishlisted": False}
    return {"isWishlisted": accounts.is_wishlisted(accounts.find_user(db, identity), productId)}


@app.get("/api/users/wishlist/products")
def wishlist_products(request: Request, db: Database = Depends(get_db)):
    identity = current_identity(request)
    if identity is None:
        return {"products": []}
    return {"products": accounts.wishlist_products(db, accounts.find_user(db, identity))}


# -------------------------------
# Orders
# -------------------------------

@app.post("/api/orders", status_code=201)
def create_order(
    payload: OrderCreate,
    identity: Identity = Depends(require_identity),
    db: Database = Depends(get_db),
):
    user = accounts.resolve_user(db, identity)
    return orders.create_order(db, user["_id"], payload)


@app.get("/api/orders")
def list_orders(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    user = accounts.find_user(db, identity)
    if user is None:
        return []
    return orders.list_orders(db, user["_id"])


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
