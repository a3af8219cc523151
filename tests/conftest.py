"""Pytest fixtures shared by the flyerdeck tests."""

import time

import jwt
import pytest

from flyerdeck.api.session import SessionResolver

TEST_SESSION_SECRET = "test-session-secret"


@pytest.fixture
def session_secret() -> str:
    return TEST_SESSION_SECRET


@pytest.fixture
def session_resolver(session_secret: str) -> SessionResolver:
    return SessionResolver(secret=session_secret)


@pytest.fixture
def session_token(session_secret: str) -> str:
    """A valid HS256 session token for a test user."""
    return jwt.encode(
        {"sub": "user-123", "email": "agent@example.com", "exp": int(time.time()) + 3600},
        session_secret,
        algorithm="HS256",
    )


@pytest.fixture
def primary_input() -> dict:
    return {
        "customerName": "山田太郎",
        "agentName": "佐藤花子",
        "agentPhoneNumber": "03-1234-5678",
        "agentEmailAddress": "agent@example.com",
        "annualIncome": 800,
        "downPayment": 500,
        "interestRate": 0.5,
        "loanTermYears": 35,
    }
