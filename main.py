import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from cart import CartService
from categories import CategoryService
from database import close_database, ensure_indexes, open_database, serialize_doc
from errors import AuthForbidden, AuthInvalidToken, AuthRequired, Duplicate, InvalidInput, MarketError
from products import DEFAULT_PAGE_SIZE, ProductService
from profiles import ProfileService
from schemas import (
    BasicInfoUpdate, CartItemAdd, CartItemUpdate, CategoryCreate, LoginPayload, ProductCreate, RegisterPayload,
    SellerInfoUpdate, ShippingAddressCreate, ShippingAddressUpdate, User,
)
from stores import CartStore, CategoryStore, ProductStore, ShippingAddressStore, UserStore

# Environment
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
JWT_ALG = "HS256"
TOKEN_EXPIRE_MIN = int(os.getenv("TOKEN_EXPIRE_MIN", "60"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
API = "/api/v1"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
auth_scheme = HTTPBearer(auto_error=False)

logger = logging.getLogger("market")


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level,
        stream=sys.stdout,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    client, db = open_database()
    if db is not None:
        ensure_indexes(db)
        logger.info("Connected to MongoDB database %s", db.name)
    app.state.client = client
    app.state.db = db
    yield
    close_database(client)
    app.state.db = None


app = FastAPI(title="Secondhand Market API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error responses: {code, message, details?}
@app.exception_handler(MarketError)
async def market_error_handler(request: Request, exc: MarketError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    field_errors = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field_errors[".".join(loc) or "_schema"] = err.get("msg")
    body = InvalidInput("Validation failed", details={"field_errors": field_errors})
    return JSONResponse(status_code=body.status_code, content=body.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=MarketError().to_dict())


# Dependencies
def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise MarketError("Database not configured")
    return db


def get_category_service(db: Database = Depends(get_db)) -> CategoryService:
    return CategoryService(CategoryStore(db))


def get_cart_service(db: Database = Depends(get_db)) -> CartService:
    users = UserStore(db)
    return CartService(CartStore(db), ProductStore(db, users), users)


def get_profile_service(db: Database = Depends(get_db)) -> ProfileService:
    return ProfileService(UserStore(db), ShippingAddressStore(db))


def get_product_service(db: Database = Depends(get_db)) -> ProductService:
    users = UserStore(db)
    profiles = ProfileService(users, ShippingAddressStore(db))
    return ProductService(ProductStore(db, users), CategoryStore(db), users, profiles)


# Utilities
def create_access_token(data: dict, expires_minutes: int = TOKEN_EXPIRE_MIN):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALG)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
                     db: Database = Depends(get_db)) -> dict:
    if credentials is None:
        raise AuthRequired()
    try:
        payload = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        raise AuthInvalidToken()
    user_id = payload.get("sub")
    if not user_id:
        raise AuthInvalidToken("Invalid token")

    try:
        user = UserStore(db).find_by_id(user_id)
    except InvalidInput:
        user = None
    if not user:
        raise AuthInvalidToken("Invalid token")
    user["_id"] = str(user["_id"])
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise AuthForbidden()
    return user


def require_user(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "user":
        raise AuthForbidden()
    return user


def public_user(doc: dict) -> dict:
    return {"id": str(doc["_id"]), "email": doc.get("email"), "role": doc.get("role")}


# Health checks
@app.get("/")
def root():
    return {"message": "Secondhand Market API running"}


@app.get("/health")
def health():
    return {"status": "ok"}


# Auth
@app.post(f"{API}/auth/register", status_code=201)
def register(payload: RegisterPayload, db: Database = Depends(get_db)):
    users = UserStore(db)
    exists = Duplicate("Email already exists", code="AUTH_EMAIL_EXISTS")
    if users.find_by_email(payload.email):
        raise exists
    try:
        doc = users.create(User(email=payload.email, password_hash=hash_password(payload.password), role="user"))
    except DuplicateKeyError:
        raise exists
    token = create_access_token({"sub": str(doc["_id"]), "role": doc["role"]})
    logger.info("User registered: %s", doc["_id"])
    return {"token": token, "user": public_user(doc)}


@app.post(f"{API}/auth/login")
def login(payload: LoginPayload, db: Database = Depends(get_db)):
    doc = UserStore(db).find_by_email(payload.email)
    if not doc or not verify_password(payload.password, doc.get("password_hash", "")):
        raise MarketError("Invalid credentials", code="AUTH_INVALID_CREDENTIALS", status_code=401)
    token = create_access_token({"sub": str(doc["_id"]), "role": doc.get("role", "user")})
    return {"token": token, "user": public_user(doc)}


# Categories
@app.post(f"{API}/admin/categories", status_code=201)
def create_category(payload: CategoryCreate, admin: dict = Depends(require_admin),
                    service: CategoryService = Depends(get_category_service)):
    return serialize_doc(service.create_category(admin["_id"], payload))


@app.get(f"{API}/admin/categories")
def list_categories(is_active: Optional[bool] = None, parent_id: Optional[str] = None,
                    admin: dict = Depends(require_admin), service: CategoryService = Depends(get_category_service)):
    return [serialize_doc(c) for c in service.list_categories(is_active=is_active, parent_id=parent_id)]


@app.get(f"{API}/categories/public")
def list_public_categories(parent_id: Optional[str] = None, service: CategoryService = Depends(get_category_service)):
    categories = service.list_categories(is_active=True, parent_id=parent_id)
    return [serialize_doc(c) for c in categories]


@app.get(f"{API}/categories/{{category_id}}/descendants")
def list_category_descendants(category_id: str, service: CategoryService = Depends(get_category_service)):
    return [serialize_doc(c) for c in service.list_descendants(category_id, is_active=True)]


# Products
@app.post(f"{API}/products", status_code=201)
def create_product(payload: ProductCreate, user: dict = Depends(require_user),
                   service: ProductService = Depends(get_product_service)):
    return serialize_doc(service.create_product(user["_id"], payload))


@app.get(f"{API}/products")
def list_products(page: int = 1, limit: int = DEFAULT_PAGE_SIZE, service: ProductService = Depends(get_product_service)):
    result = service.list_products(page=page, limit=limit)
    result["products"] = [serialize_doc(p) for p in result["products"]]
    return result


@app.get(f"{API}/products/my-products")
def list_my_products(user: dict = Depends(require_user), service: ProductService = Depends(get_product_service)):
    result = service.list_my_products(user["_id"])
    result["products"] = [serialize_doc(p) for p in result["products"]]
    return result


@app.get(f"{API}/products/{{product_id}}")
def get_product(product_id: str, service: ProductService = Depends(get_product_service)):
    return serialize_doc(service.get_product(product_id))


# Cart
@app.get(f"{API}/cart")
def get_cart(user: dict = Depends(require_user), service: CartService = Depends(get_cart_service)):
    return service.get_cart(user["_id"])


@app.post(f"{API}/cart/items")
def add_cart_item(payload: CartItemAdd, user: dict = Depends(require_user),
                  service: CartService = Depends(get_cart_service)):
    return service.add_item(user["_id"], payload.product_id, payload.quantity)


@app.put(f"{API}/cart/items/{{product_id}}")
def update_cart_item(product_id: str, payload: CartItemUpdate, user: dict = Depends(require_user),
                     service: CartService = Depends(get_cart_service)):
    return service.update_item(user["_id"], product_id, payload.quantity)


@app.delete(f"{API}/cart/items/{{product_id}}")
def remove_cart_item(product_id: str, user: dict = Depends(require_user),
                     service: CartService = Depends(get_cart_service)):
    return service.remove_item(user["_id"], product_id)


@app.delete(f"{API}/cart")
def clear_cart(user: dict = Depends(require_user), service: CartService = Depends(get_cart_service)):
    return service.clear_cart(user["_id"])


# Profile
@app.get(f"{API}/profile")
def get_profile(user: dict = Depends(get_current_user), service: ProfileService = Depends(get_profile_service)):
    return serialize_doc(service.get_profile(user["_id"]))


@app.put(f"{API}/profile/basic-info")
def update_basic_info(payload: BasicInfoUpdate, user: dict = Depends(get_current_user),
                      service: ProfileService = Depends(get_profile_service)):
    return service.update_basic_info(user["_id"], payload)


@app.put(f"{API}/profile/seller-info")
def update_seller_info(payload: SellerInfoUpdate, user: dict = Depends(get_current_user),
                       service: ProfileService = Depends(get_profile_service)):
    return service.update_seller_info(user["_id"], payload)


@app.get(f"{API}/profile/shipping-addresses")
def list_shipping_addresses(user: dict = Depends(get_current_user),
                            service: ProfileService = Depends(get_profile_service)):
    return [serialize_doc(a) for a in service.list_addresses(user["_id"])]


@app.post(f"{API}/profile/shipping-addresses", status_code=201)
def add_shipping_address(payload: ShippingAddressCreate, user: dict = Depends(get_current_user),
                         service: ProfileService = Depends(get_profile_service)):
    return serialize_doc(service.add_address(user["_id"], payload))


@app.put(f"{API}/profile/shipping-addresses/{{address_id}}")
def update_shipping_address(address_id: str, payload: ShippingAddressUpdate, user: dict = Depends(get_current_user),
                            service: ProfileService = Depends(get_profile_service)):
    return serialize_doc(service.update_address(user["_id"], address_id, payload))


@app.delete(f"{API}/profile/shipping-addresses/{{address_id}}")
def delete_shipping_address(address_id: str, user: dict = Depends(get_current_user),
                            service: ProfileService = Depends(get_profile_service)):
    return service.delete_address(user["_id"], address_id)


@app.get(f"{API}/profile/completion")
def profile_completion(user: dict = Depends(get_current_user), service: ProfileService = Depends(get_profile_service)):
    return service.completion(user["_id"])


@app.get(f"{API}/profile/check-sell")
def check_can_sell(user: dict = Depends(get_current_user), service: ProfileService = Depends(get_profile_service)):
    return service.can_sell(user["_id"])


@app.get(f"{API}/profile/check-buy")
def check_can_buy(user: dict = Depends(get_current_user), service: ProfileService = Depends(get_profile_service)):
    return service.can_buy(user["_id"])


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
