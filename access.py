"""
Shared-device access levels.

A single PIN switches the till between the staff and admin roles. There is
no per-user identity: the role is a property of the device, remembered
across restarts through a signed session marker kept in the local store.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from errors import PersistenceError, PinLockedError, ValidationError, WrongPinError

logger = logging.getLogger(__name__)

PIN_LENGTH = 4
DIGITS = "0123456789"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class Role(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"


def get_pin_hash(pin: str) -> str:
    return pwd_context.hash(pin)


def verify_pin(plain_pin: str, hashed_pin: str) -> bool:
    return pwd_context.verify(plain_pin, hashed_pin)


def create_session_token(role: Role, secret_key: str, algorithm: str = "HS256", expires_delta: Optional[timedelta] = None) -> str:
    to_encode = {"sub": "device", "role": role.value}
    if expires_delta:
        to_encode["exp"] = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def decode_session_token(token: str, secret_key: str, algorithm: str = "HS256") -> Optional[Role]:
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError:
        return None
    try:
        return Role(payload.get("role"))
    except ValueError:
        return None


class PinPad:
    """Collects digits until a full PIN has been typed."""

    def __init__(self, length: int = PIN_LENGTH):
        self.length = length
        self._digits = []

    @property
    def entered(self) -> int:
        return len(self._digits)

    def clear(self) -> None:
        self._digits.clear()

    def press(self, digit: str) -> Optional[str]:
        if len(digit) != 1 or digit not in DIGITS:
            raise ValidationError("PIN digits must be 0-9")
        self._digits.append(digit)
        if len(self._digits) < self.length:
            return None
        pin = "".join(self._digits)
        self._digits.clear()
        return pin


class AccessControl:
    def __init__(
        self,
        pin_hash: str,
        secret_key: str,
        store=None,
        algorithm: str = "HS256",
        session_ttl: Optional[timedelta] = None,
        max_attempts: int = 0,
        lockout_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pin_hash = pin_hash
        self.secret_key = secret_key
        self.store = store
        self.algorithm = algorithm
        self.session_ttl = session_ttl
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self._clock = clock

        self.pad = PinPad()
        self.role = Role.STAFF
        self.session_token: Optional[str] = None
        self._failed = 0
        self._locked_until = 0.0

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def locked_for(self) -> float:
        return max(0.0, self._locked_until - self._clock())

    def press_digit(self, digit: str, role: Role = Role.ADMIN) -> Optional[Role]:
        """Feed one digit; returns the new role once a correct PIN is complete."""
        remaining = self.locked_for
        if remaining:
            self.pad.clear()
            raise PinLockedError(f"Too many wrong PINs, try again in {int(remaining) + 1}s")

        pin = self.pad.press(digit)
        if pin is None:
            return None

        if not verify_pin(pin, self.pin_hash):
            self._failed += 1
            logger.warning("Wrong PIN entered (%d in a row)", self._failed)
            if self.max_attempts and self._failed >= self.max_attempts:
                self._failed = 0
                self._locked_until = self._clock() + self.lockout_seconds
                raise PinLockedError(f"Too many wrong PINs, try again in {int(self.lockout_seconds)}s")
            raise WrongPinError("Wrong PIN")

        self._failed = 0
        self._switch_to(role)
        return role

    def enter_pin(self, pin: str, role: Role = Role.ADMIN) -> Role:
        self.pad.clear()
        if len(pin) != self.pad.length or any(c not in DIGITS for c in pin):
            raise ValidationError(f"PIN must be {self.pad.length} digits")
        result = None
        for digit in pin:
            result = self.press_digit(digit, role)
        return result

    def logout(self) -> None:
        self.pad.clear()
        self.role = Role.STAFF
        self.session_token = None
        if self.store is not None:
            try:
                self.store.clear_session()
            except PersistenceError as exc:
                logger.error("Could not clear session marker: %s", exc)
        logger.info("Logged out, role is now %s", self.role.value)

    def restore(self) -> Role:
        """Pick up the role remembered by the local store, if still valid."""
        token = self.store.load_session() if self.store is not None else None
        role = decode_session_token(token, self.secret_key, self.algorithm) if token else None
        if role is None:
            if token:
                logger.info("Discarding expired or invalid session marker")
                self.logout()
            return self.role
        self.role = role
        self.session_token = token
        return role

    def _switch_to(self, role: Role) -> None:
        self.role = role
        self.session_token = create_session_token(role, self.secret_key, self.algorithm, self.session_ttl)
        if self.store is not None:
            try:
                self.store.save_session(self.session_token)
            except PersistenceError as exc:
                logger.error("Could not persist session marker: %s", exc)
        logger.info("Switched to %s role", role.value)
