"""Signing key material for access and refresh tokens."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from tokenkeeper.config import settings
from tokenkeeper.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyMaterial:
    """PEM encoded RSA key pair."""

    private_key: str
    public_key: str
    ephemeral: bool = False


def _read_key(inline: str, path: str, name: str) -> str:
    if path:
        try:
            return Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"Unable to read {name} from {path}: {exc}") from exc
    # Env vars commonly carry PEM bodies with escaped newlines.
    return inline.replace("\\n", "\n")


def generate_rsa_key_pair(key_size: int = 2048) -> KeyMaterial:
    """Generate an RSA pair for development use."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return KeyMaterial(private_key=private_pem, public_key=public_pem, ephemeral=True)


def load_key_material() -> KeyMaterial:
    """
    Resolve the signing key pair from settings.

    Raises:
        ConfigurationError: If no key pair is configured and ephemeral keys
            are not permitted.
    """
    private_pem = _read_key(settings.JWT_PRIVATE_KEY, settings.JWT_PRIVATE_KEY_FILE, "JWT private key").strip()
    public_pem = _read_key(settings.JWT_PUBLIC_KEY, settings.JWT_PUBLIC_KEY_FILE, "JWT public key").strip()

    if private_pem and public_pem:
        return KeyMaterial(private_key=private_pem, public_key=public_pem)

    if private_pem or public_pem:
        raise ConfigurationError("Both JWT private and public keys must be configured")

    if settings.is_production or not settings.JWT_ALLOW_EPHEMERAL_KEYS:
        raise ConfigurationError()

    logger.warning("JWT keys not configured, using a generated key pair (not suitable for production)")
    return generate_rsa_key_pair()


@lru_cache()
def get_key_material() -> KeyMaterial:
    """Get cached key material"""
    return load_key_material()
