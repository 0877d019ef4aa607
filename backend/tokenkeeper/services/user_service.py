"""User service - handles user bootstrap and authentication"""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Optional
from tokenkeeper.core import clock
from tokenkeeper.models.user import User
from tokenkeeper.schemas.user import UserCreate
from tokenkeeper.core.security import get_password_hash, verify_password
from tokenkeeper.core.exceptions import (
    DeviceMismatchError,
    DuplicateUserError,
    InvalidCredentialsError,
    PersistenceError,
    RateLimitedError,
    UserInactiveError,
)
from tokenkeeper.services.rate_limiter import RATE_LIMITED_REASON, login_rate_limiter
from tokenkeeper.services.session_service import session_service
from tokenkeeper.services.token_store import user_lookup
import logging

logger = logging.getLogger(__name__)

DEVICE_INCONSISTENCY_REASON = "device_inconsistency"


class UserService:
    """Service for user bootstrap and credential checks"""

    @staticmethod
    def create_user(db: Session, user_data: UserCreate) -> User:
        """
        Create new user

        Args:
            db: Database session
            user_data: User creation data

        Returns:
            Created user
        """
        existing = db.query(User).filter(User.email == user_data.email).first()
        if existing:
            raise DuplicateUserError(user_data.email)

        user = User(
            email=user_data.email,
            phone=user_data.phone,
            password_hash=get_password_hash(user_data.password),
            role=user_data.role.value,
        )

        try:
            db.add(user)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError("Failed to create user") from exc
        db.refresh(user)

        logger.info(f"Created user {user.id} (role: {user.role})")
        return user

    @staticmethod
    def authenticate(
        db: Session,
        identifier: str,
        password: str,
        *,
        ip_address: str,
        device_id: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> User:
        """
        Authenticate by email or phone with lockout protection

        Every attempt, successful or not, is appended to the attempt log.

        Args:
            db: Database session
            identifier: Email or phone
            password: Password
            ip_address: Originating IP
            device_id: Client device identifier
            user_agent: Client user agent

        Returns:
            Authenticated user

        Raises:
            RateLimitedError: Identifier or IP locked out
            InvalidCredentialsError: Unknown identifier or wrong password
            UserInactiveError: Account disabled or deleted
            DeviceMismatchError: Device id bound to another user agent
        """
        attempt = {
            "identifier": identifier,
            "ip_address": ip_address,
            "device_id": device_id,
            "user_agent": user_agent,
        }

        try:
            login_rate_limiter.check(db, identifier, ip_address)
        except RateLimitedError as exc:
            login_rate_limiter.record_attempt(db, success=False, reason=RATE_LIMITED_REASON, **attempt)
            logger.warning(f"Login rate limited from {ip_address} (retry after {exc.retry_after}s)")
            raise

        try:
            user = user_lookup.get_by_identifier(db, identifier)
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc

        if not user or not verify_password(password, user.password_hash):
            login_rate_limiter.record_attempt(db, success=False, reason="invalid_credentials", **attempt)
            raise InvalidCredentialsError(login_rate_limiter.remaining_attempts(db, identifier, ip_address))

        if not user.is_usable:
            login_rate_limiter.record_attempt(db, success=False, reason="inactive", **attempt)
            raise UserInactiveError()

        if device_id:
            try:
                consistent = session_service.is_device_consistent(db, user.id, device_id, user_agent)
            except SQLAlchemyError as exc:
                raise PersistenceError() from exc
            if not consistent:
                login_rate_limiter.record_attempt(db, success=False, reason=DEVICE_INCONSISTENCY_REASON, **attempt)
                logger.warning(f"Device {device_id} of user {user.id} presented a different user agent")
                raise DeviceMismatchError()

        user.last_login = clock.utcnow()
        login_rate_limiter.record_attempt(db, success=True, **attempt)

        logger.info(f"User authenticated: {user.id}")
        return user


# Singleton instance
user_service = UserService()
