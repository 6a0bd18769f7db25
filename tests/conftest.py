"""
Shared pytest fixtures for the Storefront API test suite.

The Mongo handle and the image storage adapter are swapped out through
FastAPI's dependency_overrides, so no database server or Cloudinary account
is needed:

    fake_db       in-memory async stand-in for a pymongo AsyncDatabase
    fake_storage  records uploads and hands back a fixed URL
    test_client   httpx AsyncClient talking to the app over ASGITransport
"""

import copy
import os
from types import SimpleNamespace

import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import ASGITransport, AsyncClient
from pymongo.errors import DuplicateKeyError

# Set before the app is imported so the signing key is predictable
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["CORS_ORIGIN"] = "http://localhost:3000"

from database import ensure_indexes, get_db  # noqa: E402
from storage import get_image_storage  # noqa: E402


def _matches(doc, filt):
    return all(doc.get(k) == v for k, v in filt.items())


class FakeCursor:
    def __init__(self, docs, error=None):
        self._docs = docs
        self._error = error

    def sort(self, key_or_list, direction=None):
        keys = key_or_list if isinstance(key_or_list, list) else [(key_or_list, direction)]
        # apply the least significant key first; sorted() is stable
        for key, dirn in reversed(keys):
            self._docs.sort(key=lambda d: d.get(key), reverse=dirn == -1)
        return self

    async def to_list(self, length=None):
        if self._error:
            raise self._error
        return self._docs if length is None else self._docs[:length]


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []
        self.unique_fields = set()
        # set to a PyMongoError to make every call on this collection fail
        self.error = None

    def _fail(self):
        if self.error:
            raise self.error

    async def create_index(self, key, unique=False):
        if unique:
            self.unique_fields.add(key)
        return f"{key}_1"

    def _check_unique(self, doc, ignore_id=None):
        for field in self.unique_fields:
            for existing in self.docs:
                if existing["_id"] != ignore_id and field in doc and existing.get(field) == doc[field]:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {self.name} index: {field}_1",
                        11000,
                    )

    async def insert_one(self, doc):
        self._fail()
        self._check_unique(doc)
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, filt):
        self._fail()
        for doc in self.docs:
            if _matches(doc, filt):
                return copy.deepcopy(doc)
        return None

    def find(self, filt=None):
        return FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, filt or {})], self.error)

    def _apply(self, doc, update):
        for key, value in update.get("$set", {}).items():
            doc[key] = copy.deepcopy(value)
        for key, value in update.get("$push", {}).items():
            doc.setdefault(key, []).append(copy.deepcopy(value))

    async def update_one(self, filt, update):
        self._fail()
        for doc in self.docs:
            if _matches(doc, filt):
                self._apply(doc, update)
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def find_one_and_update(self, filt, update, return_document=None):
        self._fail()
        for doc in self.docs:
            if _matches(doc, filt):
                self._apply(doc, update)
                return copy.deepcopy(doc)
        return None

    async def delete_one(self, filt):
        self._fail()
        for i, doc in enumerate(self.docs):
            if _matches(doc, filt):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


class FakeDatabase:
    name = "storefront_test"

    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    async def list_collection_names(self):
        return list(self.collections)


class FakeStorage:
    url = "https://res.cloudinary.com/demo/image/upload/products/photo.jpg"

    def __init__(self):
        self.uploads = []
        self.error = None

    async def upload(self, file):
        if self.error:
            raise self.error
        self.uploads.append(file.read())
        return self.url


@pytest_asyncio.fixture
async def fake_db():
    database = FakeDatabase()
    await ensure_indexes(database)
    return database


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest_asyncio.fixture
async def test_client(fake_db, fake_storage):
    from main import app

    app.dependency_overrides[get_db] = lambda: fake_db
    app.dependency_overrides[get_image_storage] = lambda: fake_storage
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def sample_product():
    return {
        "name": "Jamdani Saree",
        "description": "Handwoven cotton saree",
        "price": 4500,
        "category": "Fashion",
        "image": "https://res.cloudinary.com/demo/image/upload/products/saree.jpg",
    }


@pytest.fixture
def sample_order():
    return {
        "customerName": "Rahim",
        "email": "rahim@shop.com",
        "address": "House 12, Road 5, Dhaka",
        "phone": "01700000000",
        "items": [{"productId": "abc", "qty": 2}],
        "totalAmount": 9000,
    }
