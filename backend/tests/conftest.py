"""
Pytest configuration and shared test helpers for backend tests.
"""
import os

# Skip heavy server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

import copy
import re
import pytest
from unittest.mock import MagicMock, patch
from pymongo.errors import DuplicateKeyError

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


# ----------------------------------------------------------------------------
# Minimal in-memory Mongo for service and route tests
# ----------------------------------------------------------------------------

def _values(doc, path):
    """All values at a dotted path; lists fan out like Mongo array matching."""
    current = [doc]
    for part in path.split("."):
        nxt = []
        for value in current:
            if isinstance(value, list):
                for item in value:
                    if isinstance(item, dict) and part in item:
                        nxt.append(item[part])
            elif isinstance(value, dict) and part in value:
                nxt.append(value[part])
        current = nxt
    flat = []
    for value in current:
        if isinstance(value, list):
            flat.extend(value)
        flat.append(value)
    return flat


def _match_condition(values, condition):
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, arg in condition.items():
            if op == "$ne":
                if arg in values or (arg is None and not values):
                    return False
            elif op == "$in":
                if not any(v in arg for v in values):
                    return False
            elif op == "$exists":
                if bool(values) != bool(arg):
                    return False
            elif op in ("$lt", "$lte", "$gt", "$gte"):
                ok = False
                for v in values:
                    if v is None:
                        continue
                    if (op == "$lt" and v < arg) or (op == "$lte" and v <= arg) \
                            or (op == "$gt" and v > arg) or (op == "$gte" and v >= arg):
                        ok = True
                if not ok:
                    return False
            elif op == "$regex":
                if not any(isinstance(v, str) and re.search(arg, v, re.I) for v in values):
                    return False
            elif op == "$options":
                continue
            else:
                raise NotImplementedError(op)
        return True
    if condition is None:
        return not values or None in values
    return condition in values


def matches(doc, query):
    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
            continue
        if key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
            continue
        if not _match_condition(_values(doc, key), condition):
            return False
    return True


def _set_path(doc, path, value):
    parts = path.split(".")
    for part in parts[:-1]:
        doc = doc.setdefault(part, {})
    doc[parts[-1]] = value


def _unset_path(doc, path):
    parts = path.split(".")
    for part in parts[:-1]:
        doc = doc.get(part, {})
    doc.pop(parts[-1], None)


def _apply_update(doc, update, query, inserting=False):
    for path, value in update.get("$set", {}).items():
        if ".$." in path:
            array_path, field = path.split(".$.", 1)
            array_key = next(k for k in query if k.startswith(array_path + "."))
            wanted = query[array_key]
            for item in doc.get(array_path, []):
                if item.get(array_key.split(".", 1)[1]) == wanted:
                    _set_path(item, field, copy.deepcopy(value))
            continue
        _set_path(doc, path, copy.deepcopy(value))
    if inserting:
        for path, value in update.get("$setOnInsert", {}).items():
            _set_path(doc, path, copy.deepcopy(value))
    for path in update.get("$unset", {}):
        _unset_path(doc, path)
    for path, value in update.get("$push", {}).items():
        doc.setdefault(path, []).append(copy.deepcopy(value))
    for path, condition in update.get("$pull", {}).items():
        doc[path] = [item for item in doc.get(path, []) if not matches(item, condition)]


def _project(doc, projection):
    doc = copy.deepcopy(doc)
    for key, flag in (projection or {}).items():
        if flag == 0 and "." not in key:
            doc.pop(key, None)
    return doc


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction=1):
        if isinstance(key, list):
            for k, d in reversed(key):
                self.sort(k, d)
            return self

        def sort_key(doc):
            values = _values(doc, key)
            value = values[0] if values else None
            return (value is not None, value)
        self._docs = sorted(self._docs, key=sort_key, reverse=direction == -1)
        return self

    def skip(self, n):
        self._docs = self._docs[n:]
        return self

    def limit(self, n):
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        return self._docs if length is None else self._docs[:length]


class FakeCollection:
    def __init__(self, unique=()):
        self.docs = []
        self.unique = tuple(unique)

    def _check_unique(self, doc, ignore=None):
        for key in self.unique:
            for other in self.docs:
                if other is not ignore and key in doc and other.get(key) == doc.get(key):
                    raise DuplicateKeyError(f"E11000 duplicate key {key}")

    async def insert_one(self, doc):
        self._check_unique(doc)
        self.docs.append(copy.deepcopy(doc))
        return MagicMock(inserted_id=len(self.docs))

    async def find_one(self, query=None, projection=None, **kw):
        for doc in self.docs:
            if matches(doc, query):
                return _project(doc, projection)
        return None

    def find(self, query=None, projection=None, **kw):
        return FakeCursor([_project(d, projection) for d in self.docs if matches(d, query)])

    async def count_documents(self, query=None, **kw):
        return len([d for d in self.docs if matches(d, query)])

    async def update_one(self, query, update, upsert=False, **kw):
        for doc in self.docs:
            if matches(doc, query):
                before = copy.deepcopy(doc)
                _apply_update(doc, update, query)
                return MagicMock(matched_count=1, modified_count=int(doc != before), upserted_id=None)
        if upsert:
            doc = {k: v for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
            _apply_update(doc, update, query, inserting=True)
            self._check_unique(doc)
            self.docs.append(doc)
            return MagicMock(matched_count=0, modified_count=0, upserted_id=len(self.docs))
        return MagicMock(matched_count=0, modified_count=0, upserted_id=None)

    async def update_many(self, query, update, **kw):
        modified = 0
        for doc in self.docs:
            if matches(doc, query):
                before = copy.deepcopy(doc)
                _apply_update(doc, update, query)
                modified += int(doc != before)
        return MagicMock(modified_count=modified)

    async def delete_one(self, query, **kw):
        for doc in self.docs:
            if matches(doc, query):
                self.docs.remove(doc)
                return MagicMock(deleted_count=1)
        return MagicMock(deleted_count=0)

    async def delete_many(self, query, **kw):
        kept = [d for d in self.docs if not matches(d, query)]
        deleted = len(self.docs) - len(kept)
        self.docs = kept
        return MagicMock(deleted_count=deleted)


class InMemoryDB:
    """Collections used by the app, with the unique keys the real indexes enforce."""

    def __init__(self):
        self.users = FakeCollection(unique=("user_id", "email", "phone_number"))
        self.transactions = FakeCollection(unique=("order_id",))
        self.watchlists = FakeCollection()
        self.stocks = FakeCollection(unique=("ticker",))
        self.news = FakeCollection(unique=("id",))
        self.faqs = FakeCollection(unique=("question",))
        self.wikis = FakeCollection(unique=("id",))
        self.audit_logs = FakeCollection()
        self.message_logs = FakeCollection()

    def __getitem__(self, name):
        return getattr(self, name)

    def actions(self):
        return [log["action"] for log in self.audit_logs.docs]


@pytest.fixture
def memory_db():
    """In-memory database patched in for every module that calls database.get_db()."""
    db = InMemoryDB()
    with patch("database.database.get_db", return_value=db):
        yield db


def make_user(tier="free", status="active", expiry_date=None, role="user", **extra):
    from models import User, Subscription
    user = User(
        email=extra.pop("email", "budi@example.com"),
        phone_number=extra.pop("phone_number", "628123456789"),
        password_hash=extra.pop("password_hash", "x"),
        full_name=extra.pop("full_name", "Budi Santoso"),
        role=role,
        subscription=Subscription(tier=tier, status=status, expiry_date=expiry_date),
        **extra,
    )
    return user.model_dump()


@pytest.fixture
def user_factory():
    return make_user


@pytest.fixture
def auth_headers():
    """Bearer header for a stored user document."""
    from auth import create_access_token

    def _headers(user):
        token = create_access_token({"user_id": user["user_id"], "role": user["role"]})
        return {"Authorization": f"Bearer {token}"}

    return _headers
