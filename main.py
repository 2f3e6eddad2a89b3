import logging
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo import ReturnDocument
from pymongo.database import Database

import config
from auth import (
    CUSTOMER_ROLE,
    create_access_token,
    get_identity,
    hash_password,
    identity_middleware,
    is_admin,
    require_admin,
    require_user,
    token_claims,
    verify_password,
)
from cart import add_to_cart, clear_cart, get_cart, remove_from_cart, set_cart_quantity
from database import create_document, get_db, now
from errors import (
    AuthenticationFailed,
    Conflict,
    Forbidden,
    NotFound,
    ValidationFailed,
    catch_unexpected_errors,
    install_error_handlers,
)
from schemas import (
    AddToCartInput,
    CheckEmailInput,
    LoginInput,
    ProductCreate,
    ProductUpdate,
    ProfileUpdate,
    RegisterInput,
    SetCartQuantityInput,
    User,
    as_image_list,
    is_valid_product_id,
    product_response,
    user_response,
)
from storage import SupabaseStorage, discard_images, get_storage

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Commerce API")

app.middleware("http")(catch_unexpected_errors)
app.middleware("http")(identity_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)


def _checked_product_id(product_id: str) -> str:
    if not is_valid_product_id(product_id):
        raise ValidationFailed("Invalid Product ID format. Use PRDXXXXXX")
    return product_id.strip()


def _current_user(db: Database, identity: dict) -> dict:
    user = db["user"].find_one({"email": identity.get("email")})
    if not user:
        raise NotFound("User not found")
    return user


# Routes
@app.get("/")
def read_root():
    return {"message": "Commerce API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        # resolved here so an unreachable database is reported, not raised
        db = get_db()
        response["database_name"] = db.name
        response["collections"] = db.list_collection_names()
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Products
@app.get("/api/product")
def list_products(identity: Optional[dict] = Depends(get_identity), db: Database = Depends(get_db)):
    query = {} if is_admin(identity) else {"isAvailable": True}
    cursor = db["product"].find(query).sort("createdAt", -1)
    return [product_response(p) for p in cursor]


@app.get("/api/product/{product_id}")
def get_product(product_id: str, identity: Optional[dict] = Depends(get_identity), db: Database = Depends(get_db)):
    query = {"productID": _checked_product_id(product_id)}
    if not is_admin(identity):
        query["isAvailable"] = True
    product = db["product"].find_one(query)
    if not product:
        raise NotFound("Product not found or unavailable")
    return product_response(product)


@app.post("/api/product", status_code=201)
def create_product(data: ProductCreate, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    doc = data.to_document()
    existing = db["product"].find_one({"productID": doc["productID"]})
    if existing:
        raise Conflict("Product ID already exists", product=product_response(existing))
    created = create_document(db, "product", doc)
    logger.info("Product created: %s - %s", created["productID"], created["name"])
    return {"message": "Product created successfully", "product": product_response(created)}


@app.put("/api/product/{product_id}")
def update_product(
    product_id: str,
    data: ProductUpdate,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    product_id = _checked_product_id(product_id)
    changes = data.changes()
    requested_id = changes.pop("productID", None)
    if requested_id is not None and requested_id != product_id:
        raise ValidationFailed("Cannot change productID")
    if not changes:
        raise ValidationFailed("No fields to update")
    changes["updatedAt"] = now()
    updated = db["product"].find_one_and_update(
        {"productID": product_id},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFound("Product not found")
    logger.info("Product updated: %s", product_id)
    return {"message": "Product updated successfully", "product": product_response(updated)}


@app.delete("/api/product/{product_id}")
def delete_product(
    product_id: str,
    background_tasks: BackgroundTasks,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
    storage: Optional[SupabaseStorage] = Depends(get_storage),
):
    product_id = _checked_product_id(product_id)
    product = db["product"].find_one({"productID": product_id})
    if not product:
        raise NotFound("Product not found")
    db["product"].delete_one({"_id": product["_id"]})
    background_tasks.add_task(discard_images, storage, product.get("images") or [])
    logger.info("Product deleted: %s", product_id)
    return {"message": "Product and associated images deleted successfully"}


# Users
@app.post("/api/user", status_code=201)
def register(payload: RegisterInput, db: Database = Depends(get_db)):
    if db["user"].find_one({"email": payload.email}, {"_id": 1}):
        raise Conflict("This email is already registered. Please use a different email.")
    user = User(
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        password=hash_password(payload.password),
        role=CUSTOMER_ROLE,
        image=payload.image,
    )
    created = create_document(db, "user", user.model_dump(by_alias=True))
    logger.info("User registered: %s", created["email"])
    return {"message": "User created successfully", "user": user_response(created)}


@app.post("/api/user/check-email")
def check_email(payload: CheckEmailInput, db: Database = Depends(get_db)):
    if not payload.email:
        raise ValidationFailed("Email is required")
    if db["user"].find_one({"email": payload.email}, {"_id": 1}):
        raise Conflict("This email is already registered.")
    return {"message": "Email is available"}


@app.post("/api/user/login")
def login(payload: LoginInput, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password", "")):
        raise AuthenticationFailed()
    if user.get("isBlocked"):
        raise Forbidden("Account is blocked")
    claims = token_claims(user)
    token = create_access_token(claims)
    return {"message": "Authentication successful", "token": token, "user": claims}


@app.get("/api/user")
def list_users(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return [user_response(u) for u in db["user"].find({}, {"password": 0})]


@app.get("/api/user/profile")
def get_profile(identity: dict = Depends(require_user), db: Database = Depends(get_db)):
    return user_response(_current_user(db, identity))


@app.put("/api/user/profile")
def update_profile(
    payload: ProfileUpdate,
    background_tasks: BackgroundTasks,
    identity: dict = Depends(require_user),
    db: Database = Depends(get_db),
    storage: Optional[SupabaseStorage] = Depends(get_storage),
):
    user = _current_user(db, identity)
    changes = {}
    if payload.first_name:
        changes["firstName"] = payload.first_name
    if payload.last_name:
        changes["lastName"] = payload.last_name
    replaced = []
    if payload.image:
        changes["image"] = payload.image
        replaced = [url for url in as_image_list(user.get("image")) if url not in payload.image]

    if changes:
        changes["updatedAt"] = now()
        user = db["user"].find_one_and_update(
            {"_id": user["_id"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if not user:
            raise NotFound("User not found")
    if replaced:
        background_tasks.add_task(discard_images, storage, replaced)
    return {"message": "Profile updated successfully", "user": user_response(user)}


@app.delete("/api/user/profile")
def delete_profile(
    background_tasks: BackgroundTasks,
    identity: dict = Depends(require_user),
    db: Database = Depends(get_db),
    storage: Optional[SupabaseStorage] = Depends(get_storage),
):
    user = _current_user(db, identity)
    db["user"].delete_one({"_id": user["_id"]})
    background_tasks.add_task(discard_images, storage, as_image_list(user.get("image")))
    logger.info("User deleted: %s", user["email"])
    return {"message": "Profile deleted successfully"}


# Cart
@app.get("/api/user/cart")
def read_cart(identity: dict = Depends(require_user), db: Database = Depends(get_db)):
    return get_cart(db, identity.get("email"))


@app.post("/api/user/cart/{product_id}")
def add_cart_item(
    product_id: str,
    payload: Optional[AddToCartInput] = None,
    identity: dict = Depends(require_user),
    db: Database = Depends(get_db),
):
    quantity = payload.quantity if payload else 1
    cart = add_to_cart(db, identity.get("email"), product_id, quantity)
    return {"message": "Item added to cart", "cart": cart}


@app.put("/api/user/cart/{product_id}")
def update_cart_item(
    product_id: str,
    payload: SetCartQuantityInput,
    identity: dict = Depends(require_user),
    db: Database = Depends(get_db),
):
    cart = set_cart_quantity(db, identity.get("email"), product_id, payload.quantity)
    return {"message": "Cart updated", "cart": cart}


@app.delete("/api/user/cart/{product_id}")
def delete_cart_item(product_id: str, identity: dict = Depends(require_user), db: Database = Depends(get_db)):
    cart = remove_from_cart(db, identity.get("email"), product_id)
    return {"message": "Item removed from cart", "cart": cart}


@app.delete("/api/user/cart")
def empty_cart(identity: dict = Depends(require_user), db: Database = Depends(get_db)):
    return {"message": "Cart cleared", "cart": clear_cart(db, identity.get("email"))}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
