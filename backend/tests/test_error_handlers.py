import asyncio
import json
from types import SimpleNamespace

from sqlalchemy.exc import OperationalError

from tokenkeeper.api import errors
from tokenkeeper.core.exceptions import (
    PersistenceError,
    RateLimitedError,
    TokenExpiredError,
    TokenReuseDetectedError,
    UserInactiveError,
)


def _request(path="/api/v1/auth/refresh"):
    return SimpleNamespace(url=SimpleNamespace(path=path), method="POST")


def _render(handler, exc):
    response = asyncio.run(handler(_request(), exc))
    return response, json.loads(response.body)


def test_rate_limited_sets_retry_after():
    response, body = _render(errors.api_exception_handler, RateLimitedError(120))
    assert response.status_code == 429
    assert response.headers["Retry-After"] == "120"
    assert body["details"] == {"retry_after": 120}
    assert body["success"] is False


def test_reuse_is_a_401_with_reason():
    response, body = _render(errors.api_exception_handler, TokenReuseDetectedError(3))
    assert response.status_code == 401
    assert "token reuse" in response.headers["WWW-Authenticate"]
    assert body["details"] == {"reason": "token_reuse", "revoked_sessions": 3}


def test_expired_token_is_a_401():
    response, body = _render(errors.api_exception_handler, TokenExpiredError())
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"].startswith("Bearer")
    assert body["path"] == "/api/v1/auth/refresh"


def test_inactive_user_is_a_403():
    response, _ = _render(errors.api_exception_handler, UserInactiveError())
    assert response.status_code == 403
    assert "WWW-Authenticate" not in response.headers


def test_store_failures_are_503():
    response, _ = _render(errors.api_exception_handler, PersistenceError())
    assert response.status_code == 503

    response, body = _render(
        errors.database_exception_handler,
        OperationalError("SELECT 1", {}, Exception("connection refused")),
    )
    assert response.status_code == 503
    assert "details" not in body
