"""
Password hashing with Argon2id.

Hashes are PHC strings (``$argon2id$v=19$m=...,t=...,p=...$salt$hash``) so the
cost parameters travel with every hash and can be raised without invalidating
existing credentials.
"""

import logging

from argon2 import PasswordHasher as Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

logger = logging.getLogger(__name__)


class PasswordHasher:
    """Argon2id hash/verify wrapper"""

    def __init__(self, memory_cost: int = 65536, time_cost: int = 3, parallelism: int = 4):
        """
        Args:
            memory_cost: Memory in KiB
            time_cost: Number of iterations
            parallelism: Number of lanes
        """
        self._hasher = Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )

    def hash(self, password: str) -> str:
        """
        Hash a password.

        Args:
            password: Plain text password

        Returns:
            Self-describing Argon2id hash
        """
        return self._hasher.hash(password)

    def verify(self, password_hash: str, password: str) -> bool:
        """
        Verify a password against its hash.

        Hashes produced under older cost parameters still verify.

        Args:
            password_hash: Previously hashed password
            password: Plain text password to verify

        Returns:
            True if password matches, False otherwise
        """
        if not password_hash:
            return False
        try:
            return self._hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("Password hash could not be verified (malformed or unsupported)")
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        """Whether ``password_hash`` was produced with different cost parameters."""
        try:
            return self._hasher.check_needs_rehash(password_hash)
        except InvalidHashError:
            return True
