import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import catalog
import orders
from auth import ADMIN_ONLY, ALL_ROLES, STAFF, allow, optional_account, require_role
from database import ensure_indexes, get_db, ping
from errors import ShopError, Unauthenticated
from reporting import dashboard
from schemas import Role
from security import PasswordHasher, TokenSigner, get_password_hasher, get_token_signer

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Cannot serve without storage; let startup fail.
    db = get_db()
    ping(db)
    ensure_indexes(db)
    yield


app = FastAPI(title="E-Commerce API", version=API_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s -> %d (%.0fms)", request.method, request.url.path, response.status_code, duration_ms)
    return response


# Error envelope

def _envelope(message: str, error: Optional[str] = None) -> Dict[str, Any]:
    content: Dict[str, Any] = {"message": message}
    if error:
        content["error"] = error
    return content


@app.exception_handler(ShopError)
def handle_shop_error(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content=_envelope(exc.message, exc.error))


@app.exception_handler(RequestValidationError)
def handle_validation_error(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(status_code=400, content=_envelope("Invalid request", "; ".join(problems)))


@app.exception_handler(StarletteHTTPException)
def handle_http_error(request: Request, exc: StarletteHTTPException):
    message = "Route not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_envelope(message), headers=exc.headers)


@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_envelope("Internal server error"))


# Request models

class RegisterInput(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    message: str
    access_token: str
    # same value under the name older clients read
    token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None


class PasswordChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., min_length=1, alias="newPassword")


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    color: Optional[str] = None
    quantity: int = Field(0, ge=0)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    color: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)


class CartLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    quantity: int = Field(..., gt=0)


class BuyInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[CartLine] = Field(..., alias="products")
    shipping_address: str = Field(..., alias="shippingAddress")


class RoleUpdate(BaseModel):
    role: str


class StatusUpdate(BaseModel):
    status: str


def _changes(data: BaseModel) -> Dict[str, Any]:
    return {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}


# Routes
@app.get("/")
def read_root():
    return {"message": "Welcome to E-Commerce API", "version": API_VERSION}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_name": None,
        "collections": [],
    }
    try:
        ping(db)
        response["database"] = "Available"
        response["database_name"] = db.name
        response["collections"] = db.list_collection_names()
    except Exception as e:
        response["database"] = f"Error: {str(e)[:80]}"
    return response


# Catalog
@app.get("/api/viewproducts")
def view_products(db: Database = Depends(get_db)):
    products = catalog.list_products(db)
    return {"count": len(products), "products": products}


@app.get("/api/product/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return catalog.get_product(db, product_id)


@app.get("/api/search")
def search_products(
    name: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    color: Optional[str] = None,
    min_price_alt: Optional[float] = Query(None, alias="minPrice"),
    max_price_alt: Optional[float] = Query(None, alias="maxPrice"),
    db: Database = Depends(get_db),
):
    min_price = min_price if min_price is not None else min_price_alt
    max_price = max_price if max_price is not None else max_price_alt
    products = catalog.search_products(db, name=name, min_price=min_price, max_price=max_price, color=color)
    return {"count": len(products), "products": products}


def _add_product(db: Database, data: ProductIn, account: Dict[str, Any]):
    product = catalog.create_product(db, data.model_dump(), seller_id=account["id"])
    return {"message": "Product added successfully", "product": product}


def _update_product(db: Database, product_id: str, data: ProductUpdate):
    product = catalog.update_product(db, product_id, _changes(data))
    return {"message": "Product updated successfully", "product": product}


def _delete_product(db: Database, product_id: str):
    catalog.delete_product(db, product_id)
    return {"message": "Product deleted successfully"}


@app.post("/api/addproduct", status_code=201)
def add_product(data: ProductIn, account: dict = Depends(allow(*STAFF)), db: Database = Depends(get_db)):
    return _add_product(db, data, account)


@app.put("/api/product/{product_id}", dependencies=[Depends(allow(*STAFF))])
def update_product(product_id: str, data: ProductUpdate, db: Database = Depends(get_db)):
    return _update_product(db, product_id, data)


@app.delete("/api/product/{product_id}", dependencies=[Depends(allow(*ADMIN_ONLY))])
def delete_product(product_id: str, db: Database = Depends(get_db)):
    return _delete_product(db, product_id)


# Users
@app.post("/api/user/register", status_code=201)
def register_user(
    payload: RegisterInput,
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
):
    user = accounts.register(db, hasher, payload.name, payload.email, payload.password, Role.user)
    return {"message": "User registered successfully", "user": user}


@app.post("/api/user/login", response_model=TokenResponse)
def login_user(
    payload: LoginInput,
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    signer: TokenSigner = Depends(get_token_signer),
):
    token, user = accounts.login(db, hasher, signer, payload.email, payload.password)
    return TokenResponse(message="Login successful", access_token=token, token=token, user=user)


@app.get("/api/user/profile")
def user_profile(account: dict = Depends(allow(*ALL_ROLES))):
    return {"user": accounts.public_account(account)}


@app.put("/api/user/profile")
def update_user_profile(
    data: ProfileUpdate,
    account: dict = Depends(allow(*ALL_ROLES)),
    db: Database = Depends(get_db),
):
    user = accounts.update_profile(db, account, _changes(data))
    return {"message": "Profile updated successfully", "user": user}


@app.put("/api/user/change-password")
def change_password(
    data: PasswordChange,
    account: dict = Depends(allow(*ALL_ROLES)),
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
):
    accounts.change_password(db, hasher, account, data.current_password, data.new_password)
    return {"message": "Password changed successfully"}


@app.post("/api/user/buy", status_code=201)
def buy(data: BuyInput, account: dict = Depends(allow(*ALL_ROLES)), db: Database = Depends(get_db)):
    lines = [line.model_dump() for line in data.items]
    order = orders.place_order(db, account, lines, data.shipping_address)
    return {"message": "Order placed successfully", "order": order}


@app.get("/api/user/orders")
def my_orders(account: dict = Depends(allow(*ALL_ROLES)), db: Database = Depends(get_db)):
    found = orders.orders_for(db, account)
    return {"count": len(found), "orders": found}


@app.get("/api/user/order/{order_id}")
def my_order(order_id: str, account: dict = Depends(allow(*ALL_ROLES)), db: Database = Depends(get_db)):
    return orders.order_for(db, account, order_id)


@app.put("/api/user/order/{order_id}/cancel")
def cancel_order(order_id: str, account: dict = Depends(allow(*ALL_ROLES)), db: Database = Depends(get_db)):
    order = orders.cancel_order(db, account, order_id)
    return {"message": "Order cancelled successfully", "order": order}


# Sellers
@app.post("/api/seller/register", status_code=201)
def register_seller(
    payload: RegisterInput,
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
):
    seller = accounts.register(db, hasher, payload.name, payload.email, payload.password, Role.seller)
    return {"message": "Seller registered successfully", "seller": seller}


@app.post("/api/seller/login", response_model=TokenResponse)
def login_seller(
    payload: LoginInput,
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    signer: TokenSigner = Depends(get_token_signer),
):
    token, seller = accounts.login(
        db, hasher, signer, payload.email, payload.password,
        role=Role.seller, failure_message="Invalid seller credentials",
    )
    return TokenResponse(message="Seller login successful", access_token=token, token=token, user=seller)


@app.get("/api/seller/profile")
def seller_profile(account: dict = Depends(allow(*STAFF))):
    return {"seller": accounts.public_account(account)}


@app.put("/api/seller/profile")
def update_seller_profile(
    data: ProfileUpdate,
    account: dict = Depends(allow(*STAFF)),
    db: Database = Depends(get_db),
):
    seller = accounts.update_profile(db, account, _changes(data))
    return {"message": "Profile updated successfully", "seller": seller}


@app.post("/api/seller/addproduct", status_code=201)
def seller_add_product(data: ProductIn, account: dict = Depends(allow(*STAFF)), db: Database = Depends(get_db)):
    return _add_product(db, data, account)


@app.get("/api/seller/myproducts")
def my_products(account: dict = Depends(allow(*STAFF)), db: Database = Depends(get_db)):
    seller_id = None if account["role"] == Role.admin.value else account["id"]
    products = catalog.list_products(db, seller_id=seller_id)
    return {"count": len(products), "products": products}


@app.put("/api/seller/product/{product_id}", dependencies=[Depends(allow(*STAFF))])
def seller_update_product(product_id: str, data: ProductUpdate, db: Database = Depends(get_db)):
    return _update_product(db, product_id, data)


# Admin
@app.post("/api/admin/login", response_model=TokenResponse)
def login_admin(
    payload: LoginInput,
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    signer: TokenSigner = Depends(get_token_signer),
):
    token, admin = accounts.login(
        db, hasher, signer, payload.email, payload.password,
        role=Role.admin, failure_message="Invalid admin credentials",
    )
    return TokenResponse(message="Admin login successful", access_token=token, token=token, user=admin)


@app.post("/api/admin/create", status_code=201)
def create_admin(
    payload: RegisterInput,
    caller: Optional[dict] = Depends(optional_account),
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
):
    # The first admin bootstraps the system; after that only admins may add more.
    bootstrap = accounts.claim_admin_bootstrap(db)
    if not bootstrap:
        if caller is None:
            raise Unauthenticated("Access denied. No token provided.")
        require_role(caller, ADMIN_ONLY)
    try:
        admin = accounts.register(db, hasher, payload.name, payload.email, payload.password, Role.admin)
    except ShopError:
        if bootstrap:
            accounts.release_admin_bootstrap(db)
        raise
    return {"message": "Admin created successfully", "admin": admin}


@app.get("/api/admin/users", dependencies=[Depends(allow(*ADMIN_ONLY))])
def list_users(db: Database = Depends(get_db)):
    users = accounts.list_accounts(db, Role.user)
    return {"count": len(users), "users": users}


@app.get("/api/admin/sellers", dependencies=[Depends(allow(*ADMIN_ONLY))])
def list_sellers(db: Database = Depends(get_db)):
    sellers = accounts.list_accounts(db, Role.seller)
    return {"count": len(sellers), "sellers": sellers}


@app.get("/api/admin/user/{user_id}", dependencies=[Depends(allow(*ADMIN_ONLY))])
def get_user(user_id: str, db: Database = Depends(get_db)):
    return accounts.get_account(db, user_id)


@app.delete("/api/admin/user/{user_id}", dependencies=[Depends(allow(*ADMIN_ONLY))])
def delete_user(user_id: str, db: Database = Depends(get_db)):
    accounts.delete_account(db, user_id)
    return {"message": "User deleted successfully"}


@app.put("/api/admin/user/{user_id}/role", dependencies=[Depends(allow(*ADMIN_ONLY))])
def update_user_role(user_id: str, data: RoleUpdate, db: Database = Depends(get_db)):
    user = accounts.set_role(db, user_id, data.role)
    return {"message": "User role updated successfully", "user": user}


@app.get("/api/admin/dashboard", dependencies=[Depends(allow(*ADMIN_ONLY))])
def admin_dashboard(db: Database = Depends(get_db)):
    return {"stats": dashboard(db)}


@app.put("/api/admin/product/{product_id}", dependencies=[Depends(allow(*ADMIN_ONLY))])
def admin_update_product(product_id: str, data: ProductUpdate, db: Database = Depends(get_db)):
    return _update_product(db, product_id, data)


@app.delete("/api/admin/product/{product_id}", dependencies=[Depends(allow(*ADMIN_ONLY))])
def admin_delete_product(product_id: str, db: Database = Depends(get_db)):
    return _delete_product(db, product_id)


@app.get("/api/admin/orders", dependencies=[Depends(allow(*ADMIN_ONLY))])
def admin_orders(db: Database = Depends(get_db)):
    found = orders.all_orders(db)
    return {"count": len(found), "orders": found}


@app.get("/api/admin/order/{order_id}", dependencies=[Depends(allow(*ADMIN_ONLY))])
def admin_order(order_id: str, db: Database = Depends(get_db)):
    return orders.get_order(db, order_id)


@app.put("/api/admin/order/{order_id}/status", dependencies=[Depends(allow(*ADMIN_ONLY))])
def admin_order_status(order_id: str, data: StatusUpdate, db: Database = Depends(get_db)):
    order = orders.set_order_status(db, order_id, data.status)
    return {"message": "Order status updated successfully", "order": order}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
