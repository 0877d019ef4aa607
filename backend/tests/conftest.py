import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_INIT_MODE", "create_all")
os.environ.setdefault("RUN_EMBEDDED_CLEANUP", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tokenkeeper.core.database import Base
from tokenkeeper.core.security import get_password_hash
from tokenkeeper.models.user import User

PASSWORD = "correct-horse-battery"


def _make_session():
    engine = create_engine("sqlite:///:memory:")
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    return SessionLocal()


@pytest.fixture
def db():
    session = _make_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def password_hash():
    return get_password_hash(PASSWORD)


@pytest.fixture
def make_user(db, password_hash):
    def _make(email="alice@example.com", phone=None, role="member", is_active=True):
        user = User(email=email, phone=phone, password_hash=password_hash, role=role, is_active=is_active)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def password():
    return PASSWORD
