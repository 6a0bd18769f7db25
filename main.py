import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt
from bson.errors import InvalidId
from bson.objectid import ObjectId
from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import create_document, get_db, get_documents, init_db
from schemas import (
    LoginBody,
    Order as OrderSchema,
    Product as ProductSchema,
    ProductUpdate,
    Review as ReviewSchema,
    ReviewBody,
    SignupBody,
    StatusBody,
    SubscribeBody,
    Subscriber as SubscriberSchema,
    User as UserSchema,
)
from storage import CloudinaryStorage, get_image_storage

load_dotenv()

logger = logging.getLogger(__name__)

# ----------------------- Utils -----------------------
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
TOKEN_TTL = timedelta(days=7)
BCRYPT_ROUNDS = 10
# bcrypt only looks at the first 72 bytes of a password
BCRYPT_MAX_BYTES = 72
bearer = HTTPBearer(auto_error=False)


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    logging.getLogger("pymongo").setLevel(logging.WARNING)


def _encode_value(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _encode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_encode_value(v) for v in value]
    return value


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    # convert datetimes, including the ones inside embedded reviews
    return {k: _encode_value(v) for k, v in doc.items()}


def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id")


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + TOKEN_TTL
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def public_profile(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"name": user.get("name"), "email": user.get("email"), "isAdmin": user.get("isAdmin", False)}


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    database=Depends(get_db),
):
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id or not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    user = await database["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


# ----------------------- App -----------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await init_db()
    yield


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        # malformed bodies are plain client errors here, not 422
        errors = exc.errors()
        message = "Invalid request"
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
        return JSONResponse(status_code=400, content={"message": message})

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("Unexpected error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(status_code=500, content={"message": "Internal server error"})


def create_app() -> FastAPI:
    app = FastAPI(title="Storefront API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[os.getenv("CORS_ORIGIN", "http://localhost:3000")],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    return app


app = create_app()


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
async def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        database = await get_db()
        collections = await database.list_collection_names()
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
        response["collections"] = collections[:10]
    except (RuntimeError, PyMongoError) as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Upload -----------------------
@app.post("/api/upload")
async def upload_image(
    image: UploadFile = File(...),
    storage: CloudinaryStorage = Depends(get_image_storage),
):
    try:
        url = await storage.upload(image.file)
    except Exception as e:
        logger.error("Image upload failed (%s): %s", image.filename, e)
        raise HTTPException(status_code=500, detail="Image upload failed")
    finally:
        await image.close()
    return {"url": url}


# ----------------------- Auth -----------------------
@app.post("/api/auth/signup", status_code=201)
async def signup(payload: Any = Body(...), database=Depends(get_db)):
    # every failure here is reported the same way, duplicate email or not
    try:
        body = SignupBody.model_validate(payload)
        user = UserSchema(name=body.name, email=body.email, password=hash_password(body.password))
        await create_document(database, "user", user)
    except (ValidationError, PyMongoError) as e:
        logger.info("Signup rejected: %s", e)
        raise HTTPException(status_code=400, detail="Email already exists!")
    return {"message": "User created successfully!"}


@app.post("/api/auth/login")
async def login(body: LoginBody, database=Depends(get_db)):
    try:
        user = await database["user"].find_one({"email": body.email})
    except PyMongoError as e:
        logger.error("Login lookup failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))
    if not user:
        raise HTTPException(status_code=404, detail="User not found!")
    if not verify_password(body.password, user.get("password", "")):
        raise HTTPException(status_code=400, detail="Invalid credentials!")

    is_admin = user.get("isAdmin", False)
    token = create_token({"id": str(user["_id"]), "isAdmin": is_admin})
    return {"token": token, "user": public_profile(user)}


@app.get("/api/auth/me")
async def me(user=Depends(get_current_user)):
    return {"id": str(user["_id"]), **public_profile(user)}


# ----------------------- Newsletter -----------------------
@app.post("/api/subscribe", status_code=201)
async def subscribe(body: SubscribeBody, database=Depends(get_db)):
    try:
        await create_document(database, "subscriber", SubscriberSchema(email=body.email))
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already subscribed!")
    except PyMongoError as e:
        logger.error("Subscribe failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))
    return {"message": "Subscribed successfully!"}


# ----------------------- Reviews -----------------------
@app.post("/api/items/{product_id}/review", status_code=201)
async def add_review(product_id: str, body: ReviewBody, database=Depends(get_db)):
    oid = to_obj_id(product_id)
    try:
        product = await database["product"].find_one({"_id": oid})
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        review = ReviewSchema(user=body.user, rating=body.rating, comment=body.comment)
        await database["product"].update_one(
            {"_id": oid},
            {"$push": {"reviews": review.model_dump(by_alias=True)}},
        )
    except PyMongoError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": "Review added!"}


# ----------------------- Products -----------------------
@app.get("/api/items")
async def list_products(database=Depends(get_db)):
    items = await get_documents(database, "product", newest_first_by="createdAt")
    return [serialize_doc(i) for i in items]


@app.post("/api/items", status_code=201)
async def create_product(body: ProductSchema, database=Depends(get_db)):
    doc = await create_document(database, "product", body)
    return serialize_doc(doc)


@app.put("/api/items/{product_id}")
async def update_product(product_id: str, body: ProductUpdate, database=Depends(get_db)):
    oid = to_obj_id(product_id)
    update = body.model_dump(by_alias=True, exclude_unset=True)
    if update:
        doc = await database["product"].find_one_and_update(
            {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
    else:
        doc = await database["product"].find_one({"_id": oid})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(doc)


@app.delete("/api/items/{product_id}")
async def delete_product(product_id: str, database=Depends(get_db)):
    await database["product"].delete_one({"_id": to_obj_id(product_id)})
    return {"message": "Deleted"}


@app.get("/api/items/{product_id}")
async def get_product(product_id: str, database=Depends(get_db)):
    item = await database["product"].find_one({"_id": to_obj_id(product_id)})
    if not item:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(item)


# ----------------------- Orders -----------------------
@app.post("/api/orders", status_code=201)
async def create_order(body: OrderSchema, database=Depends(get_db)):
    try:
        doc = await create_document(database, "order", body)
    except PyMongoError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_doc(doc)


@app.get("/api/orders")
async def list_orders(database=Depends(get_db)):
    orders = await get_documents(database, "order", newest_first_by="orderDate")
    return [serialize_doc(o) for o in orders]


@app.get("/api/user-orders/{email}")
async def list_user_orders(email: str, database=Depends(get_db)):
    try:
        orders = await get_documents(database, "order", {"email": email}, newest_first_by="orderDate")
    except PyMongoError as e:
        logger.error("Order lookup for %s failed: %s", email, e)
        raise HTTPException(status_code=500, detail=str(e))
    return [serialize_doc(o) for o in orders]


@app.patch("/api/orders/{order_id}")
async def update_order_status(order_id: str, body: StatusBody, database=Depends(get_db)):
    doc = await database["order"].find_one_and_update(
        {"_id": to_obj_id(order_id)},
        {"$set": {"status": body.status}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise HTTPException(status_code=404, detail="Order not found")
    return serialize_doc(doc)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 5000))
    uvicorn.run(app, host="0.0.0.0", port=port)
