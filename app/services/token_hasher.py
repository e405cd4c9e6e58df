"""Token generation and salted hashing for one-time exchange tokens."""

from __future__ import annotations

import secrets

import bcrypt

TOKEN_BYTES = 32
LOOKUP_PREFIX_LENGTH = 8


class TokenHasherService:
    """Generate random tokens and verify them against bcrypt hashes."""

    def __init__(self, *, rounds: int = 12) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31.")
        self._rounds = rounds

    @staticmethod
    def generate() -> str:
        """Return 32 random bytes as 64 hex characters."""
        return secrets.token_hex(TOKEN_BYTES)

    @staticmethod
    def lookup_prefix(token: str) -> str:
        """Non-secret leading slice used to narrow candidate rows."""
        return token[:LOOKUP_PREFIX_LENGTH]

    def hash(self, token: str) -> str:
        """Hash a plaintext token with a fresh salt."""
        hashed = bcrypt.hashpw(token.encode("utf-8"), bcrypt.gensalt(rounds=self._rounds))
        return hashed.decode("utf-8")

    def verify(self, token: str, token_hash: str) -> bool:
        """Constant-time comparison of ``token`` against a stored hash."""
        try:
            return bcrypt.checkpw(token.encode("utf-8"), token_hash.encode("utf-8"))
        except ValueError:
            return False


__all__ = ["LOOKUP_PREFIX_LENGTH", "TOKEN_BYTES", "TokenHasherService"]
