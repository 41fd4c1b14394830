from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from passlib.context import CryptContext

logger = logging.getLogger(__name__)


class InvalidCredentials(ValueError):
    """Raised when an email/password pair does not match an account."""


class IdentityProvider:
    """Boundary to the credential store and the mail sender."""

    async def sign_in(self, email: str, password: str) -> str:
        """Return the user id for valid credentials, else raise InvalidCredentials."""
        raise NotImplementedError

    async def send_password_reset(self, email: str) -> None:
        raise NotImplementedError

    async def resend_verification(self, email: str) -> None:
        raise NotImplementedError


@dataclass
class Account:
    user_id: str
    password_hash: str
    is_verified: bool = False


@dataclass
class OutgoingMessage:
    kind: str
    email: str


@dataclass
class PasswordIdentityProvider(IdentityProvider):
    """In-process provider with bcrypt password hashes.

    Reset and verification mails are queued on ``outbox`` for a mail sender to
    pick up. Unknown addresses are accepted silently so responses do not
    reveal which emails have accounts.
    """

    bcrypt_rounds: int = 12
    accounts: dict[str, Account] = field(default_factory=dict)
    outbox: list[OutgoingMessage] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.pwd_context = CryptContext(
            schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=self.bcrypt_rounds
        )

    def hash_password(self, password: str) -> str:
        return self.pwd_context.hash(password)

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        return self.pwd_context.verify(plain_password, hashed_password)

    def add_account(self, email: str, password: str, is_verified: bool = False) -> Account:
        email = email.strip().lower()
        if email in self.accounts:
            raise ValueError("Email already registered")
        account = Account(str(uuid.uuid4()), self.hash_password(password), is_verified)
        self.accounts[email] = account
        return account

    async def sign_in(self, email: str, password: str) -> str:
        account = self.accounts.get(email.strip().lower())
        if account is None or not self.verify_password(password, account.password_hash):
            raise InvalidCredentials("Invalid email or password")
        return account.user_id

    async def send_password_reset(self, email: str) -> None:
        email = email.strip().lower()
        if email not in self.accounts:
            logger.info("Password reset requested for unknown address")
            return
        self.outbox.append(OutgoingMessage("password-reset", email))

    async def resend_verification(self, email: str) -> None:
        email = email.strip().lower()
        account = self.accounts.get(email)
        if account is None or account.is_verified:
            return
        self.outbox.append(OutgoingMessage("verification", email))
