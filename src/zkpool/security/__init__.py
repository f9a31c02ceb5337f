"""Security and authentication module."""

from zkpool.security.auth import (
    authenticate_identity,
    create_access_token,
    identity_from_token,
    login_message,
    verify_access_token,
)
from zkpool.security.identity import Keypair, verify_signature

__all__ = [
    "authenticate_identity",
    "create_access_token",
    "identity_from_token",
    "login_message",
    "verify_access_token",
    "Keypair",
    "verify_signature",
]
