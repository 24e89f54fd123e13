from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from hashlib import sha1
from threading import Lock

from farm_access.adapters.base import (
    EmailAlreadyInUseError,
    InvalidCredentialsError,
    UnknownIdentityError,
    hash_password,
    normalize_email,
)
from farm_access.domain.models import IdentityToken


@dataclass
class SentMail:
    to: str
    subject: str
    body: str


@dataclass
class RecordingMailer:
    """Mailer that keeps every message in ``outbox`` instead of delivering it."""

    outbox: list[SentMail] = field(default_factory=list)
    fail_with: Exception | None = None

    def send(self, to: str, subject: str, body: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.outbox.append(SentMail(to=to, subject=subject, body=body))


@dataclass
class FakeAccount:
    uid: str
    email: str
    display_name: str | None
    password_hash: str
    email_verified: bool = False
    verification_code: str | None = None
    signed_in: bool = False


@dataclass
class InMemoryIdentityProvider:
    """Deterministic identity provider for tests and local runs.

    ``fail_with`` makes every call raise the given error; ``outbox`` keeps the
    mail that a real provider would have delivered.
    """

    accounts: dict[str, FakeAccount] = field(default_factory=dict)
    outbox: list[SentMail] = field(default_factory=list)
    fail_with: Exception | None = None
    _lock: Lock = field(default_factory=Lock, repr=False)

    def _uid_for(self, email: str) -> str:
        return sha1(email.encode(), usedforsecurity=False).hexdigest()[:28]

    def _check_failure(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _by_email(self, email: str) -> FakeAccount | None:
        normalized = normalize_email(email)
        return next((item for item in self.accounts.values() if item.email == normalized), None)

    def _token(self, account: FakeAccount) -> IdentityToken:
        return IdentityToken(
            uid=account.uid,
            email=account.email,
            email_verified=account.email_verified,
            display_name=account.display_name,
        )

    def add_account(
        self,
        email: str,
        password: str,
        *,
        uid: str | None = None,
        display_name: str | None = None,
        email_verified: bool = False,
    ) -> IdentityToken:
        normalized = normalize_email(email)
        account = FakeAccount(
            uid=uid or self._uid_for(normalized),
            email=normalized,
            display_name=display_name,
            password_hash=hash_password(password),
            email_verified=email_verified,
        )
        with self._lock:
            self.accounts[account.uid] = account
        return self._token(account)

    def sign_in(self, email: str, password: str) -> IdentityToken:
        self._check_failure()
        account = self._by_email(email)
        if account is None or not hmac.compare_digest(account.password_hash, hash_password(password)):
            raise InvalidCredentialsError("invalid credentials")
        account.signed_in = True
        return self._token(account)

    def sign_up(self, email: str, password: str, display_name: str) -> IdentityToken:
        self._check_failure()
        if self._by_email(email) is not None:
            raise EmailAlreadyInUseError("email already in use")
        return self.add_account(email, password, display_name=display_name)

    def sign_out(self, uid: str) -> None:
        self._check_failure()
        account = self.accounts.get(uid)
        if account is not None:
            account.signed_in = False

    def send_password_reset(self, email: str) -> None:
        self._check_failure()
        account = self._by_email(email)
        if account is None:
            raise UnknownIdentityError("no account for email")
        self.outbox.append(SentMail(account.email, "Reset your password", "reset"))

    def send_verification_email(self, uid: str) -> None:
        self._check_failure()
        account = self.accounts.get(uid)
        if account is None:
            raise UnknownIdentityError("unknown identity")
        if account.email_verified:
            return
        account.verification_code = f"verify-{account.uid}"
        self.outbox.append(SentMail(account.email, "Verify your email", account.verification_code))

    def confirm_email(self, code: str) -> IdentityToken:
        self._check_failure()
        account = next((item for item in self.accounts.values() if item.verification_code == code), None)
        if account is None:
            raise InvalidCredentialsError("invalid verification code")
        account.email_verified = True
        account.verification_code = None
        return self._token(account)
