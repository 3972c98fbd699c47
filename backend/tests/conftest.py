"""
conftest.py — Shared pytest fixtures for the Land Development Portal test suite.

No real database or external service is used. Service tests are pure unit
tests; API tests use FastAPI's TestClient with dependency overrides and the
FakeSession stand-in below, so no PostgreSQL connection is ever opened.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

_VISION_KEY_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "XAI_API_KEY", "OPENAI_API_KEY", "GROQ_API_KEY")


# ---------------------------------------------------------------------------
# Environment fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def no_vision_keys(monkeypatch):
    """Clear every vision provider key so provider resolution starts empty."""
    for var in _VISION_KEY_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


# ---------------------------------------------------------------------------
# Lot fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def stored_lots():
    """
    Three lots as serialized from the lots table (snake_case, decimal text).
    Lot 103 has no measurements recorded yet.
    """
    return [
        {"id": 1, "lot_number": "101", "area": "450.00", "frontage": "15.00", "depth": "30.00", "street_name": "Main St"},
        {"id": 2, "lot_number": "102", "area": "512.00", "frontage": "16.00", "depth": "32.00", "street_name": "Main St"},
        {"id": 3, "lot_number": "103", "area": None, "frontage": None, "depth": None, "street_name": None},
    ]


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def api_client():
    """
    TestClient over the full app. Tests may set app.dependency_overrides;
    they are cleared on teardown.
    """
    from fastapi.testclient import TestClient
    from app.main import app

    # Fresh middleware stack so rate-limit windows do not carry over between tests
    app.middleware_stack = None
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Database stand-in
# ---------------------------------------------------------------------------

class FakeResult:
    """Just enough of a SQLAlchemy Result for the route code."""

    def __init__(self, rows):
        self._rows = list(rows)

    def scalars(self):
        return self

    def first(self):
        return self._rows[0] if self._rows else None

    def all(self):
        return list(self._rows)

    def scalar_one_or_none(self):
        return self.first()


class _Savepoint:
    def __init__(self, session):
        self.session = session

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            await self.session.flush()
        return False


class FakeSession:
    """
    AsyncSession stand-in.

    Rows registered with put() are returned by get(); execute() pops queued
    result lists in order and returns an empty result once the queue runs out.
    Every call is recorded in ``events`` so tests can assert on ordering.
    Setting ``flush_error`` makes the next flush raise it.
    """

    def __init__(self):
        self.rows = {}
        self.results = []
        self.added = []
        self.deleted = []
        self.events = []
        self.flush_error = None
        self._next_id = 1000

    def put(self, obj):
        self.rows[(type(obj), obj.id)] = obj
        return obj

    def added_of(self, model):
        return [o for o in self.added if isinstance(o, model)]

    async def get(self, model, ident):
        self.events.append("get")
        return self.rows.get((model, ident))

    async def execute(self, stmt):
        self.events.append("execute")
        return FakeResult(self.results.pop(0) if self.results else [])

    async def scalar(self, stmt):
        self.events.append("scalar")
        rows = self.results.pop(0) if self.results else []
        return rows[0] if rows else None

    def add(self, obj):
        self.events.append("add")
        self.added.append(obj)

    async def delete(self, obj):
        self.events.append("delete")
        self.deleted.append(obj)

    async def flush(self):
        self.events.append("flush")
        if self.flush_error is not None:
            error, self.flush_error = self.flush_error, None
            raise error
        for obj in self.added:
            if getattr(obj, "id", None) is None:
                obj.id = self._next_id
                self._next_id += 1

    async def refresh(self, obj):
        self.events.append("refresh")

    def begin_nested(self):
        return _Savepoint(self)


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fake_db(fake_session):
    """Route every get_db dependency to one FakeSession for the test."""
    from app.db import get_db
    from app.main import app

    session = fake_session

    async def override():
        yield session

    app.dependency_overrides[get_db] = override
    yield session
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture(scope="session")
def tiny_pdf():
    """Three blank pages of distinct sizes (points): 100x50, 60x40, 80x80."""
    import fitz

    doc = fitz.open()
    for width, height in ((100, 50), (60, 40), (80, 80)):
        doc.new_page(width=width, height=height)
    try:
        return doc.tobytes()
    finally:
        doc.close()
