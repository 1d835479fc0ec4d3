"""Shared fixtures for the College Planner test suite."""

import os
import uuid

import pytest

os.environ['JWT_SECRET'] = 'test-jwt-secret'
os.environ.pop('REDIS_URL', None)

from app import app as flask_app, limiter, store  # noqa: E402


def build_content(periods=6, steps=5):
    """A well-formed plan with numbered periods and steps."""
    return {
        "overview": "Strong STEM profile with room to grow in leadership.",
        "timeline": [
            {
                "period": f"Period {i}",
                "events": [
                    {"title": f"Event {i}", "category": "academics", "description": f"Work for period {i}."},
                ],
            }
            for i in range(1, periods + 1)
        ],
        "nextSteps": [
            {"title": f"Step {i}", "description": f"Do step {i}.", "priority": "high"}
            for i in range(1, steps + 1)
        ],
    }


@pytest.fixture
def client():
    flask_app.config['TESTING'] = True
    limiter.enabled = False
    with flask_app.test_client() as c:
        yield c


@pytest.fixture
def report_store():
    return store


@pytest.fixture
def seeded_report():
    """Put a six-period report straight into the store and return its id."""
    def _seed(periods=6, steps=5):
        report_id = f"report_{uuid.uuid4().hex}"
        store.put({
            "id": report_id,
            "studentProfile": {"studentName": "Ada", "currentGrade": "11th"},
            "content": build_content(periods, steps),
            "createdAt": "2026-01-15T09:00:00+00:00",
        })
        return report_id
    return _seed


@pytest.fixture(autouse=True)
def _clean_payment_env(monkeypatch):
    for var in (
        'BETA_CODE', 'COUPON_CODES', 'COUPON_DISCOUNT_AMOUNT',
        'LEMON_SQUEEZY_API_KEY', 'LEMON_SQUEEZY_STORE_ID', 'LEMON_SQUEEZY_VARIANT_ID',
        'KRYPTOGO_CLIENT_ID', 'KRYPTOGO_API_SECRET', 'KRYPTOGO_WEBHOOK_SECRET',
        'ANTHROPIC_API_KEY',
    ):
        monkeypatch.delenv(var, raising=False)
