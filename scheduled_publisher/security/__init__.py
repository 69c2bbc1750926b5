"""Credential handling for connected channels."""

from scheduled_publisher.security.credentials import CredentialService

__all__ = [
    "CredentialService",
]
