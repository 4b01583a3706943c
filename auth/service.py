"""
auth/service.py -- The signup and two-step login state machine.

AuthService coordinates the credential store, the OTP store, the password
hasher, the token issuer and the OTP delivery channel. It owns every rule
that spans more than one of them.

Login attempt states:

    CREDENTIALS_PENDING --login()--> OTP_ISSUED --verify_otp()--> AUTHENTICATED
            |                            |
            +------------> REJECTED <----+

  login()       email + password checked, older unused codes invalidated, a new
                code stored and handed to the delivery channel.
  verify_otp()  email + password checked AGAIN (a stolen code is useless without
                the password), then the code is found and consumed with a
                compare-and-set before any token is issued.

Both steps share _verify_credentials(), so the two call sites cannot drift.
Unknown email and wrong password produce the same AuthenticationError and the
same bcrypt cost. Wrong, expired and already-used codes all produce the same
"invalid or expired OTP" rejection.

Failure semantics: every rejection is final for the request; nothing retries.
SQLAlchemy errors are logged here with full detail and re-raised as
InfrastructureError so no SQL text reaches the HTTP layer.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import NoReturn

from sqlalchemy.exc import SQLAlchemyError

from auth.delivery import OtpDelivery, ResponseDelivery
from auth.errors import (
    INVALID_OTP,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InfrastructureError,
    ValidationError,
)
from auth.models import AuthResult, LoginState, OtpChallenge, User
from auth.otp import describe_validity, generate_otp, is_valid_otp_format, otp_expiration
from auth.otp_store import OtpStore
from auth.store import UserStore
from auth.tokens import burn_password_check, create_access_token, decode_access_token, hash_password, verify_password
from auth.validation import check_email, check_name, check_new_password, mask_email

logger = logging.getLogger("payflow.auth")

DEFAULT_OTP_TTL_MINUTES = 10


class AuthService:
    """Signup, login step 1 (OTP issue), login step 2 (OTP verify), current user.

    Usage:
        service = AuthService(UserStore(engine), OtpStore(engine))
        result = service.signup("Jane Doe", "jane@x.com", "Abcd12!@", "Abcd12!@")
        challenge = service.login("jane@x.com", "Abcd12!@")
        result = service.verify_otp("jane@x.com", "Abcd12!@", challenge.code)
        user = service.get_current_user(result.token)
    """

    def __init__(
        self,
        user_store: UserStore,
        otp_store: OtpStore,
        delivery: OtpDelivery | None = None,
        otp_ttl_minutes: int = DEFAULT_OTP_TTL_MINUTES,
        token_expire_seconds: int = 0,
    ) -> None:
        self.user_store = user_store
        self.otp_store = otp_store
        self.delivery = delivery or ResponseDelivery()
        self.otp_ttl_minutes = otp_ttl_minutes
        self.token_expire_seconds = token_expire_seconds

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    def signup(self, name: str, email: str, password: str, confirm_password: str) -> AuthResult:
        """Create an account and return it with a token. No OTP step on signup.

        Raises ValidationError (every field problem at once) or ConflictError.
        """
        errors: dict[str, str] = {}
        for field, problem in (("name", check_name(name)), ("email", check_email(email))):
            if problem:
                errors[field] = problem
        errors.update(check_new_password(password, confirm_password))
        if errors:
            raise ValidationError(errors)

        with self._store_errors("signup"):
            if self.user_store.find_by_email(email) is not None:
                logger.info("signup rejected for %s: email already registered", mask_email(email))
                raise ConflictError()

        hashed = hash_password(password)

        # A concurrent signup for the same address can still win the race
        # between the lookup above and this insert; the UNIQUE constraint turns
        # that into DuplicateIdentityError, which is itself a ConflictError.
        with self._store_errors("signup"):
            user = self.user_store.create(name, email, hashed)

        logger.info("signup: user %s created for %s", user.id, mask_email(user.email))
        return AuthResult(user=user, token=create_access_token(user.id, self.token_expire_seconds))

    # ------------------------------------------------------------------
    # Login step 1
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> OtpChallenge:
        """Check credentials, then issue a fresh code and invalidate older ones."""
        user = self._verify_credentials(email, password)

        code = generate_otp()
        expires_at = otp_expiration(self.otp_ttl_minutes)
        with self._store_errors("login"):
            # Must precede create(): otherwise the new code would be invalidated too.
            self.otp_store.invalidate_all_unused(user.email)
            self.otp_store.create(user.email, code, expires_at)

        self.delivery.deliver(user.email, code)
        logger.info("login %s: %s", LoginState.OTP_ISSUED.value, mask_email(user.email))
        return OtpChallenge(
            email=user.email,
            code=code if self.delivery.reveals_code else None,
            expires_in=describe_validity(self.otp_ttl_minutes),
            expires_at=expires_at,
        )

    # ------------------------------------------------------------------
    # Login step 2
    # ------------------------------------------------------------------

    def verify_otp(self, email: str, password: str, code: str) -> AuthResult:
        """Re-check credentials, consume the code, and issue a token."""
        user = self._verify_credentials(email, password)

        code = (code or "").strip()
        if not is_valid_otp_format(code):
            self._reject_otp(user.email, "malformed code")

        with self._store_errors("verify_otp"):
            record = self.otp_store.find_valid(user.email, code)
            if record is None:
                self._reject_otp(user.email, "no matching valid code")
            # Committed before the token exists: if anything below fails the
            # code is still spent and cannot be replayed.
            if not self.otp_store.mark_used(record.id):
                self._reject_otp(user.email, "code consumed by a concurrent request")

        logger.info("login %s: %s", LoginState.AUTHENTICATED.value, mask_email(user.email))
        return AuthResult(user=user, token=create_access_token(user.id, self.token_expire_seconds))

    # ------------------------------------------------------------------
    # Current user
    # ------------------------------------------------------------------

    def get_current_user(self, token: str | None) -> User:
        """Resolve a bearer token to the (secret-free) account it was issued for."""
        if not token:
            raise AuthorizationError("Access denied. No token provided.", code="missing_token")
        user_id = decode_access_token(token)
        with self._store_errors("get_current_user"):
            user = self.user_store.find_by_id(user_id)
        if user is None:
            raise AuthorizationError("Invalid token. User not found.", code="user_not_found")
        return user

    # ------------------------------------------------------------------
    # Password change
    # ------------------------------------------------------------------

    def change_password(self, user_id: int, current_password: str, new_password: str, confirm_password: str) -> None:
        """Replace the password of an authenticated user after re-checking the current one."""
        errors = check_new_password(new_password, confirm_password, field="newPassword")
        if not current_password:
            errors["currentPassword"] = "Current password is required"
        if errors:
            raise ValidationError(errors)

        with self._store_errors("change_password"):
            user = self.user_store.find_by_id(user_id, include_secret=True)
        if user is None:
            raise AuthorizationError("Invalid token. User not found.", code="user_not_found")
        if not verify_password(current_password, user.password_hash or ""):
            logger.info("password change rejected for user %s: wrong current password", user_id)
            raise AuthenticationError("Current password is incorrect.")

        hashed = hash_password(new_password)
        with self._store_errors("change_password"):
            self.user_store.update_secret(user_id, hashed)
        logger.info("password changed for user %s", user_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep_expired_otps(self) -> int:
        with self._store_errors("sweep_expired_otps"):
            removed = self.otp_store.sweep_expired()
        if removed:
            logger.info("swept %d expired OTP record(s)", removed)
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _verify_credentials(self, email: str, password: str) -> User:
        """Shared credential gate for both login steps.

        Returns the user without its hash. Always runs bcrypt, including for
        unknown emails, so timing does not reveal which emails are registered.
        """
        missing: dict[str, str] = {}
        if not email or not email.strip():
            missing["email"] = "Email is required"
        if not password:
            missing["password"] = "Password is required"
        if missing:
            raise ValidationError(missing)

        with self._store_errors("verify_credentials"):
            user = self.user_store.find_by_email(email, include_secret=True)

        if user is None or not user.password_hash:
            burn_password_check(password)
            logger.info("login %s: unknown email %s", LoginState.REJECTED.value, mask_email(email.strip()))
            raise AuthenticationError()
        if not verify_password(password, user.password_hash):
            logger.info("login %s: wrong password for %s", LoginState.REJECTED.value, mask_email(user.email))
            raise AuthenticationError()

        user.password_hash = None
        return user

    def _reject_otp(self, email: str, reason: str) -> NoReturn:
        logger.info("login %s: %s (%s)", LoginState.REJECTED.value, mask_email(email), reason)
        raise AuthenticationError(INVALID_OTP, code="invalid_otp")

    @contextmanager
    def _store_errors(self, operation: str) -> Iterator[None]:
        """Translate driver/database failures into InfrastructureError.

        Domain errors raised inside the block (ConflictError, AuthenticationError,
        ...) pass through untouched.
        """
        try:
            yield
        except SQLAlchemyError as exc:
            logger.exception("store failure during %s", operation)
            raise InfrastructureError() from exc
