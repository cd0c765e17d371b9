"""Password hashing with PBKDF2-HMAC-SHA256.

Stored format (self-describing, so verification never depends on current
configuration)::

    $pbkdf2-sha256$<iterations>$<salt-hex>$<derived-key-hex>

Verification reads the iteration count from the stored string; raising
``AUTH_PBKDF2_ITERATIONS`` therefore only affects new hashes, and
``needs_rehash`` lets the login flow upgrade old ones in place.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass

from authgate.services.tokens import constant_time_equals

logger = logging.getLogger(__name__)

PBKDF2_TAG = "pbkdf2-sha256"
LEGACY_SEED_TAG = "sha256"
LEGACY_SEED_SALT = "seed-salt"
DERIVED_KEY_BYTES = 32


@dataclass(frozen=True)
class Pbkdf2Hash:
    """Parsed ``$pbkdf2-sha256$`` hash."""

    iterations: int
    salt: bytes
    derived_key_hex: str

    def encode(self) -> str:
        return f"${PBKDF2_TAG}${self.iterations}${self.salt.hex()}${self.derived_key_hex}"


@dataclass(frozen=True)
class LegacySeedHash:
    """Dev-only ``$sha256$`` hash found in seeded databases."""

    digest_hex: str


StoredHash = Pbkdf2Hash | LegacySeedHash


def parse_stored_hash(stored: str) -> StoredHash | None:
    """Parse a stored password hash into its tagged format.

    Args:
        stored: Value of ``users.password_hash``.

    Returns:
        Parsed hash, or None when the string is malformed or the tag unknown.
    """
    parts = [part for part in stored.split("$") if part]
    if not parts:
        return None

    tag = parts[0]
    if tag == PBKDF2_TAG and len(parts) == 4:
        _, iterations_raw, salt_hex, key_hex = parts
        try:
            iterations = int(iterations_raw)
            salt = bytes.fromhex(salt_hex)
            bytes.fromhex(key_hex)
        except ValueError:
            return None
        if not salt:
            return None
        return Pbkdf2Hash(iterations=iterations, salt=salt, derived_key_hex=key_hex.lower())

    if tag == LEGACY_SEED_TAG and len(parts) == 2:
        return LegacySeedHash(digest_hex=parts[1].lower())

    return None


def _derive(password: str, salt: bytes, iterations: int) -> str:
    return hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt, iterations, dklen=DERIVED_KEY_BYTES
    ).hex()


class PasswordHasher:
    """Hash and verify passwords.

    Attributes:
        iterations: PBKDF2 iteration count for new hashes.
        salt_bytes: Random salt length.
        min_iterations: Stored hashes below this count never verify.
        allow_legacy_seed_hashes: Accept ``$sha256$`` seed hashes (development only).
    """

    def __init__(
        self,
        *,
        iterations: int = 310_000,
        salt_bytes: int = 32,
        min_iterations: int = 100_000,
        allow_legacy_seed_hashes: bool = False,
    ) -> None:
        if iterations < min_iterations:
            raise ValueError("iterations must be >= min_iterations")
        if salt_bytes < 16:
            raise ValueError("salt_bytes must be >= 16")

        self.iterations = iterations
        self.salt_bytes = salt_bytes
        self.min_iterations = min_iterations
        self.allow_legacy_seed_hashes = allow_legacy_seed_hashes
        self._dummy_hash = Pbkdf2Hash(
            iterations=iterations,
            salt=b"\x00" * salt_bytes,
            derived_key_hex="00" * DERIVED_KEY_BYTES,
        ).encode()

    @property
    def dummy_hash(self) -> str:
        """Hash of the same shape and cost as a real one, matching no password."""
        return self._dummy_hash

    def hash(self, password: str) -> str:
        salt = secrets.token_bytes(self.salt_bytes)
        return Pbkdf2Hash(
            iterations=self.iterations,
            salt=salt,
            derived_key_hex=_derive(password, salt, self.iterations),
        ).encode()

    def verify(self, password: str, stored: str) -> bool:
        """Check ``password`` against a stored hash in constant time.

        Args:
            password: Candidate plaintext password.
            stored: Stored self-describing hash.

        Returns:
            True when the password matches.
        """
        parsed = parse_stored_hash(stored)

        if isinstance(parsed, LegacySeedHash):
            if not self.allow_legacy_seed_hashes:
                logger.warning("password.legacy_hash_rejected")
                return False
            computed = hashlib.sha256((password + LEGACY_SEED_SALT).encode("utf-8")).hexdigest()
            return constant_time_equals(computed, parsed.digest_hex)

        if parsed is None or parsed.iterations < self.min_iterations:
            return False

        computed = _derive(password, parsed.salt, parsed.iterations)
        return constant_time_equals(computed, parsed.derived_key_hex)

    def needs_rehash(self, stored: str) -> bool:
        """Whether a stored hash should be replaced with one at current cost."""
        parsed = parse_stored_hash(stored)
        if not isinstance(parsed, Pbkdf2Hash):
            return True
        return parsed.iterations < self.iterations or len(parsed.salt) < self.salt_bytes
