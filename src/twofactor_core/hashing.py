"""Backup code hashing.

Backup codes are stored as bcrypt hashes by default. argon2id is available
when ``argon2-cffi`` is installed (``pip install twofactor-core[argon2]``).
"""

from __future__ import annotations

from typing import Any, cast

from .config import BackupCodeConfig, HashAlgorithm


def normalize_code(code: str) -> str:
    """Normalize backup code input: strip whitespace, upper-case."""
    return "".join(code.split()).upper()


class BackupCodeHasher:
    """One-way hasher for backup codes using bcrypt or argon2id.

    Example:
        ```python
        hasher = BackupCodeHasher(rounds=12)
        stored = hasher.hash("482913")
        assert hasher.verify(stored, "482913")
        ```
    """

    def __init__(
        self,
        *,
        algorithm: HashAlgorithm = "bcrypt",
        rounds: int = 12,
    ) -> None:
        """Initialize the hasher.

        Args:
            algorithm: Hashing algorithm (default bcrypt).
            rounds: bcrypt cost factor (default 12).
        """
        self.algorithm = algorithm
        self.rounds = rounds
        self._bcrypt: Any = None
        self._argon2: Any = None

    @classmethod
    def from_config(cls, config: BackupCodeConfig) -> BackupCodeHasher:
        return cls(algorithm=config.hash_algorithm, rounds=config.hash_rounds)

    def _get_bcrypt(self) -> Any:
        """Lazy import bcrypt."""
        if self._bcrypt is None:
            try:
                import bcrypt

                self._bcrypt = bcrypt
            except ImportError as e:
                raise ImportError(
                    "bcrypt is required for backup code hashing. "
                    "Install with: pip install bcrypt"
                ) from e
        return self._bcrypt

    def _get_argon2(self) -> Any:
        """Lazy import argon2."""
        if self._argon2 is None:
            try:
                from argon2 import PasswordHasher as Argon2Hasher

                self._argon2 = Argon2Hasher()
            except ImportError as e:
                raise ImportError(
                    "argon2-cffi is required for argon2id hashing. "
                    "Install with: pip install twofactor-core[argon2]"
                ) from e
        return self._argon2

    def hash(self, code: str) -> str:
        """Hash a normalized backup code."""
        if self.algorithm == "argon2id":
            return cast("str", self._get_argon2().hash(code))
        bcrypt_module = self._get_bcrypt()
        salt = bcrypt_module.gensalt(rounds=self.rounds)
        return cast("str", bcrypt_module.hashpw(code.encode(), salt).decode())

    def verify(self, code_hash: str, code: str) -> bool:
        """Check a code against a stored hash.

        The algorithm is detected from the hash prefix, so codes hashed
        before a configuration change keep verifying.

        Args:
            code_hash: Stored hash.
            code: Normalized candidate code.

        Returns:
            True if the code matches. Malformed hashes never match.
        """
        if code_hash.startswith("$argon2"):
            return self._verify_argon2id(code_hash, code)
        bcrypt_module = self._get_bcrypt()
        try:
            return cast("bool", bcrypt_module.checkpw(code.encode(), code_hash.encode()))
        except ValueError:
            # Invalid salt or malformed hash
            return False

    def _verify_argon2id(self, code_hash: str, code: str) -> bool:
        hasher = self._get_argon2()
        from argon2.exceptions import InvalidHashError, VerificationError

        try:
            return cast("bool", hasher.verify(code_hash, code))
        except (VerificationError, InvalidHashError):
            return False


__all__: list[str] = ["BackupCodeHasher", "normalize_code"]
