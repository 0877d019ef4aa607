"""API dependencies - access token authentication"""

import ipaddress
import logging

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from tokenkeeper.config import settings
from tokenkeeper.core.database import get_db
from tokenkeeper.core.security import AccessTokenClaims
from tokenkeeper.models.user import User
from tokenkeeper.services.token_service import token_service

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer()


def _is_trusted_proxy(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    for entry in settings.TRUSTED_PROXIES:
        try:
            if ip in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning("Ignoring invalid TRUSTED_PROXIES entry: %s", entry)
    return False


def get_client_ip(request: Request) -> str:
    """
    Address used for the per-IP login lockout

    X-Forwarded-For is only read when the socket peer is a trusted proxy, and
    then from the right: the first hop not added by a trusted proxy is the
    client. Hops further left are client-controlled and ignored.
    """
    peer = request.client.host if request.client else "unknown"
    if not _is_trusted_proxy(peer):
        return peer

    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded:
        return peer
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if not _is_trusted_proxy(hop):
            return hop
    return hops[0] if hops else peer


async def get_access_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> AccessTokenClaims:
    """
    Verify the bearer access token

    Args:
        request: Incoming request, the resolved user is kept on its state
        credentials: HTTP Bearer credentials
        db: Database session

    Returns:
        Verified access token claims

    Raises:
        TokenExpiredError, MalformedTokenError, WrongTokenTypeError, UserInactiveError
    """
    claims, user = token_service.resolve_access_token(db, credentials.credentials)
    request.state.current_user = user
    return claims


async def get_current_user(
    request: Request,
    claims: AccessTokenClaims = Depends(get_access_claims),
) -> User:
    """
    Get current authenticated user from the access token

    Args:
        request: Incoming request
        claims: Verified access token claims

    Returns:
        Current user
    """
    return request.state.current_user
