from __future__ import annotations

import hashlib
import logging
import os
from typing import Protocol

from farm_access.domain.models import IdentityToken

logger = logging.getLogger(__name__)


class IdentityProviderError(Exception):
    pass


class InvalidCredentialsError(IdentityProviderError):
    pass


class EmailAlreadyInUseError(IdentityProviderError):
    pass


class UnknownIdentityError(IdentityProviderError):
    pass


class IdentityProvider(Protocol):
    def sign_in(self, email: str, password: str) -> IdentityToken: ...

    def sign_up(self, email: str, password: str, display_name: str) -> IdentityToken: ...

    def sign_out(self, uid: str) -> None: ...

    def send_password_reset(self, email: str) -> None: ...

    def send_verification_email(self, uid: str) -> None: ...

    def confirm_email(self, code: str) -> IdentityToken: ...


class Mailer(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


class LogMailer:
    """Delivery stand-in that writes outgoing mail to the log."""

    def send(self, to: str, subject: str, body: str) -> None:
        logger.info("mail to=%s subject=%s", to, subject)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_password(raw_password: str) -> str:
    salt = os.getenv("PASSWORD_SALT", "farm-access-dev-salt")
    return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()
