"""Unit tests for password hashing."""

import hashlib

import pytest

from authgate.services.passwords import (
    LegacySeedHash,
    PasswordHasher,
    Pbkdf2Hash,
    parse_stored_hash,
)


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(iterations=1000, salt_bytes=16, min_iterations=500)


def _legacy(password: str) -> str:
    return "$sha256$" + hashlib.sha256((password + "seed-salt").encode()).hexdigest()


class TestHashFormat:
    def test_hash_is_self_describing(self, hasher: PasswordHasher) -> None:
        stored = hasher.hash("correct horse")
        parsed = parse_stored_hash(stored)

        assert stored.startswith("$pbkdf2-sha256$1000$")
        assert isinstance(parsed, Pbkdf2Hash)
        assert parsed.iterations == 1000
        assert len(parsed.salt) == 16
        assert len(parsed.derived_key_hex) == 64

    def test_salts_are_random(self, hasher: PasswordHasher) -> None:
        assert hasher.hash("same password") != hasher.hash("same password")

    @pytest.mark.parametrize(
        "stored",
        [
            "",
            "plaintext",
            "$pbkdf2-sha256$abc$00$00",
            "$pbkdf2-sha256$1000$zz$00",
            "$pbkdf2-sha256$1000$$00",
            "$pbkdf2-sha256$1000$00",
            "$bcrypt$10$whatever",
        ],
    )
    def test_malformed_hashes_do_not_parse(self, stored: str) -> None:
        assert parse_stored_hash(stored) is None

    def test_legacy_hash_parses(self) -> None:
        assert isinstance(parse_stored_hash(_legacy("pw")), LegacySeedHash)


class TestVerify:
    def test_round_trip(self, hasher: PasswordHasher) -> None:
        stored = hasher.hash("s3cret-pass")

        assert hasher.verify("s3cret-pass", stored) is True
        assert hasher.verify("s3cret-pasS", stored) is False
        assert hasher.verify("", stored) is False

    def test_verification_reads_iterations_from_stored_hash(self) -> None:
        old = PasswordHasher(iterations=600, salt_bytes=16, min_iterations=500)
        new = PasswordHasher(iterations=1200, salt_bytes=16, min_iterations=500)
        stored = old.hash("pw-123456")

        assert new.verify("pw-123456", stored) is True

    def test_hashes_below_minimum_iterations_never_verify(self) -> None:
        weak = PasswordHasher(iterations=100, salt_bytes=16, min_iterations=1)
        strict = PasswordHasher(iterations=1000, salt_bytes=16, min_iterations=500)
        stored = weak.hash("pw-123456")

        assert strict.verify("pw-123456", stored) is False

    def test_malformed_stored_hash_is_rejected(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("anything", "garbage") is False

    def test_dummy_hash_matches_nothing(self, hasher: PasswordHasher) -> None:
        dummy = parse_stored_hash(hasher.dummy_hash)

        assert isinstance(dummy, Pbkdf2Hash)
        assert dummy.iterations == hasher.iterations
        assert hasher.verify("", hasher.dummy_hash) is False
        assert hasher.verify("password", hasher.dummy_hash) is False

    def test_legacy_hash_rejected_by_default(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("pw", _legacy("pw")) is False

    def test_legacy_hash_accepted_when_enabled(self) -> None:
        dev = PasswordHasher(iterations=1000, salt_bytes=16, min_iterations=500, allow_legacy_seed_hashes=True)

        assert dev.verify("pw", _legacy("pw")) is True
        assert dev.verify("other", _legacy("pw")) is False


class TestNeedsRehash:
    def test_current_hash_does_not_need_rehash(self, hasher: PasswordHasher) -> None:
        assert hasher.needs_rehash(hasher.hash("pw")) is False

    def test_lower_iterations_need_rehash(self, hasher: PasswordHasher) -> None:
        old = PasswordHasher(iterations=600, salt_bytes=16, min_iterations=500)

        assert hasher.needs_rehash(old.hash("pw")) is True

    def test_legacy_and_unknown_formats_need_rehash(self, hasher: PasswordHasher) -> None:
        assert hasher.needs_rehash(_legacy("pw")) is True
        assert hasher.needs_rehash("garbage") is True


@pytest.mark.parametrize(
    "kwargs",
    [
        {"iterations": 10, "min_iterations": 100},
        {"iterations": 1000, "min_iterations": 100, "salt_bytes": 8},
    ],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        PasswordHasher(**kwargs)
