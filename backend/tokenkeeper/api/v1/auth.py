"""Token lifecycle routes: login, refresh, logout and device sessions"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from tokenkeeper.api.deps import get_access_claims, get_client_ip, get_current_user
from tokenkeeper.core.database import get_db
from tokenkeeper.core.security import AccessTokenClaims
from tokenkeeper.models.user import User
from tokenkeeper.schemas.auth import (
    LoginRequest,
    LogoutRequest,
    RefreshTokenRequest,
    RevocationResponse,
    SessionResponse,
    SecurityEventResponse,
    SessionStatsResponse,
    TokenResponse,
)
from tokenkeeper.schemas.user import UserResponse
from tokenkeeper.services.audit_service import DEVICE_SESSION_REVOKED, LOGOUT_ALL, audit_service
from tokenkeeper.services.revocation_service import revocation_service
from tokenkeeper.services.session_service import session_service
from tokenkeeper.services.token_service import IssuedTokens, token_service
from tokenkeeper.services.user_service import user_service

router = APIRouter()


def _token_response(issued: IssuedTokens, user: Optional[User] = None) -> TokenResponse:
    return TokenResponse(
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        expires_in=issued.expires_in,
        device_id=issued.device_id,
        user=UserResponse.model_validate(user) if user is not None else None,
    )


@router.post("/login", response_model=TokenResponse)
def login(
    credentials: LoginRequest,
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Authenticate by email or phone and issue a pair bound to the device

    A login without ``device_id`` starts a new device; the generated id is
    returned and should be sent on later logins from the same client.
    """
    client_ip = get_client_ip(request)
    user_agent = request.headers.get("user-agent")

    user = user_service.authenticate(
        db,
        credentials.identifier,
        credentials.password,
        ip_address=client_ip,
        device_id=credentials.device_id,
        user_agent=user_agent,
    )
    issued = token_service.issue_token_pair(
        db,
        user,
        device_id=credentials.device_id,
        device_name=credentials.device_name,
        user_agent=user_agent,
        ip_address=client_ip,
        login_method="email" if "@" in credentials.identifier else "phone",
    )
    return _token_response(issued, user)


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    req: RefreshTokenRequest,
    db: Session = Depends(get_db),
):
    """
    Exchange a refresh token for a new pair. Each refresh token works once;
    presenting it again revokes every session on its device.
    """
    return _token_response(token_service.rotate_refresh_token(db, req.refresh_token))


@router.post("/logout", response_model=RevocationResponse)
def logout(
    body: Optional[LogoutRequest] = None,
    claims: AccessTokenClaims = Depends(get_access_claims),
    db: Session = Depends(get_db)
):
    """Revoke the given refresh token, or the whole current device without one"""
    if body and body.refresh_token:
        count = int(revocation_service.revoke_by_token(db, body.refresh_token, user_id=claims.user_id))
    elif claims.device_id:
        count = revocation_service.revoke_family(db, claims.user_id, claims.device_id)
    else:
        count = 0
    return RevocationResponse(message="Logged out successfully", revoked_sessions=count)


@router.post("/logout-all", response_model=RevocationResponse)
def logout_all(
    request: Request,
    claims: AccessTokenClaims = Depends(get_access_claims),
    db: Session = Depends(get_db)
):
    count = revocation_service.revoke_all_for_user(db, claims.user_id)
    audit_service.log_event(
        db,
        user_id=claims.user_id,
        action=LOGOUT_ALL,
        target_type="user",
        target_id=str(claims.user_id),
        ip_address=get_client_ip(request),
        metadata={"revoked_sessions": count},
    )
    return RevocationResponse(message="Logged out from all devices", revoked_sessions=count)


@router.post("/logout-others", response_model=RevocationResponse)
def logout_other_devices(
    claims: AccessTokenClaims = Depends(get_access_claims),
    db: Session = Depends(get_db)
):
    """Keep the current device signed in, revoke every other one"""
    if not claims.device_id:
        return RevocationResponse(success=False, message="Access token is not bound to a device")
    count = revocation_service.revoke_other_devices(db, claims.user_id, claims.device_id)
    return RevocationResponse(message="Other devices logged out", revoked_sessions=count)


@router.get("/sessions", response_model=List[SessionResponse])
def list_sessions(
    claims: AccessTokenClaims = Depends(get_access_claims),
    db: Session = Depends(get_db)
):
    """Active sessions, one per device, newest first"""
    devices = session_service.list_active_devices(db, claims.user_id)
    return [
        SessionResponse.model_validate(record).model_copy(update={"current": record.device_id == claims.device_id})
        for record in devices
    ]


@router.get("/sessions/stats", response_model=SessionStatsResponse)
def session_stats(
    claims: AccessTokenClaims = Depends(get_access_claims),
    db: Session = Depends(get_db)
):
    return SessionStatsResponse(**session_service.token_stats(db, claims.user_id))


@router.get("/sessions/{device_id}", response_model=List[SessionResponse])
def list_device_sessions(
    device_id: str,
    claims: AccessTokenClaims = Depends(get_access_claims),
    db: Session = Depends(get_db)
):
    """Active records of one device, oldest first"""
    return [
        SessionResponse.model_validate(record).model_copy(update={"current": device_id == claims.device_id})
        for record in session_service.list_device_sessions(db, claims.user_id, device_id)
    ]


@router.delete("/sessions/{device_id}", response_model=RevocationResponse)
def revoke_session(
    device_id: str,
    request: Request,
    claims: AccessTokenClaims = Depends(get_access_claims),
    db: Session = Depends(get_db)
):
    """Sign one device out"""
    count = revocation_service.revoke_family(db, claims.user_id, device_id)
    if count:
        audit_service.log_event(
            db,
            user_id=claims.user_id,
            action=DEVICE_SESSION_REVOKED,
            target_type="device",
            target_id=device_id,
            ip_address=get_client_ip(request),
            metadata={"revoked_sessions": count},
        )
    return RevocationResponse(message="Device session revoked", revoked_sessions=count)


@router.get("/security-events", response_model=List[SecurityEventResponse])
def list_security_events(
    action: Optional[str] = None,
    claims: AccessTokenClaims = Depends(get_access_claims),
    db: Session = Depends(get_db)
):
    """Reuse detections, evictions and logouts recorded for the current user"""
    events = audit_service.list_events(db, user_id=claims.user_id, action=action)
    return [SecurityEventResponse.model_validate(event) for event in events]


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    return UserResponse.model_validate(current_user)
