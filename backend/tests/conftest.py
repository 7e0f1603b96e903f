"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path

# Skip server startup (MongoDB connection) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")
# Fixed test credentials; services read these at import time.
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")

# Ensure backend root is on path
backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest
from unittest.mock import AsyncMock, MagicMock

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app

TEST_USER = {"user_id": "user-1", "email": "user@example.com"}


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


@pytest.fixture
def auth_user():
    return dict(TEST_USER)


def make_db():
    """MagicMock database whose collections expose the async motor calls the services use."""
    db = MagicMock()
    for name in ("user_subscriptions", "user_settings", "invoices", "privileged_emails",
                 "audit_logs", "companies", "contacts", "job_openings", "payment_orders"):
        collection = MagicMock()
        collection.find_one = AsyncMock(return_value=None)
        collection.update_one = AsyncMock()
        collection.insert_one = AsyncMock()
        collection.count_documents = AsyncMock(return_value=0)
        collection.find = MagicMock(return_value=MagicMock(
            sort=MagicMock(return_value=MagicMock(
                limit=MagicMock(return_value=MagicMock(to_list=AsyncMock(return_value=[])))
            ))
        ))
        setattr(db, name, collection)
    db.__getitem__.side_effect = lambda name: getattr(db, name)
    return db


@pytest.fixture
def mock_db():
    return make_db()
