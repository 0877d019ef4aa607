import asyncio
from types import SimpleNamespace

import pytest

from tokenkeeper.api import deps
from tokenkeeper.api.v1 import auth as auth_routes
from tokenkeeper.config import settings
from tokenkeeper.core.exceptions import (
    DeviceMismatchError,
    InvalidCredentialsError,
    RateLimitedError,
    TokenReuseDetectedError,
)
from tokenkeeper.core.security import decode_access_token
from tokenkeeper.models.audit import AuditEvent
from tokenkeeper.models.security import LoginAttempt
from tokenkeeper.schemas.auth import LoginRequest, LogoutRequest, RefreshTokenRequest
from tokenkeeper.services.session_service import session_service


def _request(host="127.0.0.1", headers=None):
    return SimpleNamespace(
        headers={"user-agent": "pytest"} if headers is None else headers,
        client=SimpleNamespace(host=host),
        state=SimpleNamespace(),
    )


def _login(db, password, device_id="laptop", identifier="alice@example.com"):
    return auth_routes.login(
        LoginRequest(identifier=identifier, password=password, device_id=device_id, device_name="Work laptop"),
        request=_request(),
        db=db,
    )


def test_client_ip_ignores_forwarded_header_from_untrusted_peer(monkeypatch):
    monkeypatch.setattr(settings, "TRUSTED_PROXIES", [])
    request = _request(host="198.51.100.9", headers={"x-forwarded-for": "203.0.113.7"})
    assert deps.get_client_ip(request) == "198.51.100.9"


def test_client_ip_behind_trusted_proxy_uses_rightmost_untrusted_hop(monkeypatch):
    monkeypatch.setattr(settings, "TRUSTED_PROXIES", ["10.0.0.0/8"])
    request = _request(host="10.0.0.2", headers={"x-forwarded-for": "192.0.2.1, 203.0.113.7, 10.0.0.1"})
    assert deps.get_client_ip(request) == "203.0.113.7"
    assert deps.get_client_ip(_request(host="10.0.0.2", headers={})) == "10.0.0.2"


def test_spoofed_forwarded_header_does_not_reset_ip_lockout(db, make_user, password, monkeypatch):
    monkeypatch.setattr(settings, "TRUSTED_PROXIES", [])
    make_user()
    for i in range(settings.MAX_LOGIN_ATTEMPTS):
        spoofed = _request(host="198.51.100.9", headers={"x-forwarded-for": f"203.0.113.{i}"})
        with pytest.raises(InvalidCredentialsError):
            auth_routes.login(
                LoginRequest(identifier=f"user{i}@example.com", password="wrong-password"), request=spoofed, db=db
            )

    spoofed = _request(host="198.51.100.9", headers={"x-forwarded-for": "203.0.113.200"})
    with pytest.raises(RateLimitedError):
        auth_routes.login(LoginRequest(identifier="alice@example.com", password=password), request=spoofed, db=db)


def test_login_returns_pair_for_device(db, make_user, password):
    user = make_user()

    response = _login(db, password)

    assert response.token_type == "bearer"
    assert response.device_id == "laptop"
    assert response.user.email == "alice@example.com"
    claims = decode_access_token(response.access_token)
    assert claims.user_id == user.id
    assert claims.login_method == "email"

    sessions = session_service.list_active_sessions(db, user.id)
    assert len(sessions) == 1
    assert sessions[0].user_agent == "pytest"
    assert sessions[0].ip_address == "127.0.0.1"


def test_refresh_then_replay_is_rejected(db, make_user, password):
    make_user()
    login = _login(db, password)

    refreshed = auth_routes.refresh_token(RefreshTokenRequest(refresh_token=login.refresh_token), db=db)
    assert refreshed.refresh_token != login.refresh_token

    with pytest.raises(TokenReuseDetectedError):
        auth_routes.refresh_token(RefreshTokenRequest(refresh_token=login.refresh_token), db=db)


def test_logout_with_refresh_token(db, make_user, password):
    user = make_user()
    login = _login(db, password)
    claims = decode_access_token(login.access_token)

    response = auth_routes.logout(LogoutRequest(refresh_token=login.refresh_token), claims=claims, db=db)

    assert response.success is True
    assert response.revoked_sessions == 1
    assert session_service.list_active_sessions(db, user.id) == []


def test_logout_without_body_revokes_current_device(db, make_user, password):
    user = make_user()
    login = _login(db, password, device_id="laptop")
    _login(db, password, device_id="phone")
    claims = decode_access_token(login.access_token)

    response = auth_routes.logout(None, claims=claims, db=db)

    assert response.revoked_sessions == 1
    assert [record.device_id for record in session_service.list_active_sessions(db, user.id)] == ["phone"]


def test_logout_all_revokes_every_device(db, make_user, password):
    user = make_user()
    login = _login(db, password, device_id="laptop")
    _login(db, password, device_id="phone")
    claims = decode_access_token(login.access_token)

    response = auth_routes.logout_all(_request(), claims=claims, db=db)

    assert response.revoked_sessions == 2
    assert session_service.list_active_sessions(db, user.id) == []
    assert db.query(AuditEvent).filter(AuditEvent.action == "logout_all").count() == 1


def test_sessions_listing_and_device_revocation(db, make_user, password):
    make_user()
    login = _login(db, password, device_id="laptop")
    _login(db, password, device_id="phone")
    claims = decode_access_token(login.access_token)

    sessions = auth_routes.list_sessions(claims=claims, db=db)
    assert {session.device_id for session in sessions} == {"laptop", "phone"}
    assert {session.device_id for session in sessions if session.current} == {"laptop"}

    response = auth_routes.revoke_session("phone", request=_request(), claims=claims, db=db)
    assert response.revoked_sessions == 1
    assert db.query(AuditEvent).filter(AuditEvent.action == "device_session_revoked").count() == 1
    sessions = auth_routes.list_sessions(claims=claims, db=db)
    assert [session.device_id for session in sessions] == ["laptop"]


def test_access_dependency_resolves_current_user(db, make_user, password):
    user = make_user()
    login = _login(db, password)
    request = _request()
    credentials = SimpleNamespace(credentials=login.access_token)

    claims = asyncio.run(deps.get_access_claims(request, credentials=credentials, db=db))
    current = asyncio.run(deps.get_current_user(request, claims=claims))

    assert current.id == user.id
    assert auth_routes.get_current_user_info(current_user=current).email == "alice@example.com"


def test_logout_others_keeps_current_device(db, make_user, password):
    user = make_user()
    login = _login(db, password, device_id="laptop")
    _login(db, password, device_id="phone")
    _login(db, password, device_id="tablet")
    claims = decode_access_token(login.access_token)

    response = auth_routes.logout_other_devices(claims=claims, db=db)

    assert response.revoked_sessions == 2
    assert [record.device_id for record in session_service.list_active_sessions(db, user.id)] == ["laptop"]


def test_session_stats_route(db, make_user, password):
    make_user()
    login = _login(db, password, device_id="laptop")
    auth_routes.refresh_token(RefreshTokenRequest(refresh_token=login.refresh_token), db=db)
    claims = decode_access_token(login.access_token)

    stats = auth_routes.session_stats(claims=claims, db=db)

    assert stats.total == 2
    assert stats.revoked == 1
    assert stats.active == 1
    assert stats.devices == 1


def test_failed_login_reports_remaining_attempts(db, make_user):
    make_user()
    with pytest.raises(InvalidCredentialsError) as excinfo:
        auth_routes.login(LoginRequest(identifier="alice@example.com", password="wrong-password"), request=_request(), db=db)
    assert excinfo.value.details == {"remaining_attempts": settings.MAX_LOGIN_ATTEMPTS - 1}


def test_login_rejects_device_seen_with_another_user_agent(db, make_user, password):
    user = make_user()
    _login(db, password, device_id="laptop")

    with pytest.raises(DeviceMismatchError):
        auth_routes.login(
            LoginRequest(identifier="alice@example.com", password=password, device_id="laptop"),
            request=_request(headers={"user-agent": "curl/8.0"}),
            db=db,
        )

    attempt = db.query(LoginAttempt).order_by(LoginAttempt.id.desc()).first()
    assert attempt.success is False
    assert attempt.reason == "device_inconsistency"
    assert len(session_service.list_active_sessions(db, user.id)) == 1


def test_logout_twice_reports_no_new_revocation(db, make_user, password):
    make_user()
    login = _login(db, password)
    claims = decode_access_token(login.access_token)
    body = LogoutRequest(refresh_token=login.refresh_token)

    assert auth_routes.logout(body, claims=claims, db=db).revoked_sessions == 1
    assert auth_routes.logout(body, claims=claims, db=db).revoked_sessions == 0


def test_device_sessions_route(db, make_user, password):
    make_user()
    login = _login(db, password, device_id="laptop")
    _login(db, password, device_id="laptop")
    _login(db, password, device_id="phone")
    claims = decode_access_token(login.access_token)

    sessions = auth_routes.list_device_sessions("laptop", claims=claims, db=db)
    assert [session.device_id for session in sessions] == ["laptop", "laptop"]
    assert all(session.current for session in sessions)
    assert not any(session.current for session in auth_routes.list_device_sessions("phone", claims=claims, db=db))


def test_security_events_route(db, make_user, password):
    make_user()
    login = _login(db, password, device_id="laptop")
    _login(db, password, device_id="phone")
    claims = decode_access_token(login.access_token)
    auth_routes.revoke_session("phone", request=_request(), claims=claims, db=db)
    auth_routes.logout_all(_request(), claims=claims, db=db)

    events = auth_routes.list_security_events(claims=claims, db=db)
    assert [event.action for event in events] == ["device_session_revoked", "logout_all"]
    assert events[0].target_id == "phone"
    assert events[1].details == {"revoked_sessions": 1}

    only_logout = auth_routes.list_security_events(action="logout_all", claims=claims, db=db)
    assert [event.action for event in only_logout] == ["logout_all"]
