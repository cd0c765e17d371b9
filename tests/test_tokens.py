"""Tests for token primitives and the single-use token service."""

from datetime import datetime, timedelta, timezone

import pytest

from authgate.core.errors import InvalidTokenError, TokenExpiredError
from authgate.models.user import User
from authgate.repositories.user_repo import UserRepository
from authgate.services.tokens import (
    SingleUseTokenService,
    TokenPurpose,
    compose_token,
    constant_time_equals,
    generate_secret,
    hash_token,
    split_token,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class TestPrimitives:
    def test_generate_secret_is_random_hex(self) -> None:
        first, second = generate_secret(), generate_secret()

        assert len(first) == 64
        assert int(first, 16) >= 0
        assert first != second

    def test_hash_token_is_sha256_hex(self) -> None:
        assert hash_token("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"

    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("abc", "abc", True),
            ("abc", "abd", False),
            ("abc", "ab", False),
            ("", "", True),
        ],
    )
    def test_constant_time_equals(self, a: str, b: str, expected: bool) -> None:
        assert constant_time_equals(a, b) is expected

    def test_split_on_first_delimiter(self) -> None:
        assert split_token(compose_token("user-1", "s.e.c")) == ("user-1", "s.e.c")

    @pytest.mark.parametrize("token", ["", "no-delimiter", ".secret", "owner."])
    def test_split_rejects_malformed(self, token: str) -> None:
        assert split_token(token) is None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def user(db_session) -> User:
    user = UserRepository(db_session).create(email="Ada@Example.com", password_hash="x", name="Ada")
    db_session.commit()
    return user


@pytest.fixture
def tokens(db_session, clock: FakeClock) -> SingleUseTokenService:
    return SingleUseTokenService(UserRepository(db_session), clock=clock)


class TestSingleUseTokenService:
    def test_issue_stores_only_the_hash(self, tokens, user: User) -> None:
        token = tokens.issue(user, TokenPurpose.PASSWORD_RESET)
        owner_id, secret = split_token(token)

        assert owner_id == user.id
        assert user.reset_token_hash == hash_token(secret)
        assert secret not in user.reset_token_hash
        assert user.email_verify_token_hash is None

    def test_default_lifetimes(self, tokens, user: User, clock: FakeClock) -> None:
        tokens.issue(user, TokenPurpose.PASSWORD_RESET)
        tokens.issue(user, TokenPurpose.EMAIL_VERIFICATION)

        assert user.reset_token_expires_at == clock.now + timedelta(hours=1)
        assert user.email_verify_expires_at == clock.now + timedelta(hours=24)

    def test_verify_succeeds_exactly_once(self, tokens, user: User) -> None:
        token = tokens.issue(user, TokenPurpose.PASSWORD_RESET)

        assert tokens.verify(token, TokenPurpose.PASSWORD_RESET).id == user.id
        assert user.reset_token_hash is None
        assert user.reset_token_expires_at is None

        with pytest.raises(InvalidTokenError):
            tokens.verify(token, TokenPurpose.PASSWORD_RESET)

    def test_reissue_invalidates_previous_token(self, tokens, user: User) -> None:
        first = tokens.issue(user, TokenPurpose.EMAIL_VERIFICATION)
        second = tokens.issue(user, TokenPurpose.EMAIL_VERIFICATION)

        with pytest.raises(InvalidTokenError):
            tokens.verify(first, TokenPurpose.EMAIL_VERIFICATION)
        assert tokens.verify(second, TokenPurpose.EMAIL_VERIFICATION).id == user.id

    def test_purposes_use_separate_slots(self, tokens, user: User) -> None:
        reset = tokens.issue(user, TokenPurpose.PASSWORD_RESET)
        verify = tokens.issue(user, TokenPurpose.EMAIL_VERIFICATION)

        with pytest.raises(InvalidTokenError):
            tokens.verify(reset, TokenPurpose.EMAIL_VERIFICATION)

        # The failed cross-purpose attempt leaves both slots intact.
        assert tokens.verify(verify, TokenPurpose.EMAIL_VERIFICATION).id == user.id
        assert tokens.verify(reset, TokenPurpose.PASSWORD_RESET).id == user.id

    def test_expired_token_is_rejected_and_cleared(self, tokens, user: User, clock: FakeClock) -> None:
        token = tokens.issue(user, TokenPurpose.PASSWORD_RESET)
        clock.advance(hours=1)

        with pytest.raises(TokenExpiredError) as exc:
            tokens.verify(token, TokenPurpose.PASSWORD_RESET)

        assert exc.value.code == "token_expired"
        assert user.reset_token_hash is None

        # Once cleared, the same token is simply invalid.
        with pytest.raises(InvalidTokenError):
            tokens.verify(token, TokenPurpose.PASSWORD_RESET)

    def test_token_valid_just_before_expiry(self, tokens, user: User, clock: FakeClock) -> None:
        token = tokens.issue(user, TokenPurpose.PASSWORD_RESET)
        clock.advance(minutes=59, seconds=59)

        assert tokens.verify(token, TokenPurpose.PASSWORD_RESET).id == user.id

    def test_wrong_secret_keeps_slot(self, tokens, user: User) -> None:
        token = tokens.issue(user, TokenPurpose.PASSWORD_RESET)

        with pytest.raises(InvalidTokenError):
            tokens.verify(compose_token(user.id, "0" * 64), TokenPurpose.PASSWORD_RESET)

        assert tokens.verify(token, TokenPurpose.PASSWORD_RESET).id == user.id

    @pytest.mark.parametrize("token", ["", "garbage", "unknown-user.abcdef", ".abcdef"])
    def test_malformed_or_unknown_tokens(self, tokens, user: User, token: str) -> None:
        with pytest.raises(InvalidTokenError) as exc:
            tokens.verify(token, TokenPurpose.PASSWORD_RESET)

        assert exc.value.code == "invalid_token"

    def test_custom_ttls(self, db_session, user: User, clock: FakeClock) -> None:
        service = SingleUseTokenService(
            UserRepository(db_session),
            ttls={TokenPurpose.PASSWORD_RESET: timedelta(minutes=5)},
            clock=clock,
        )
        token = service.issue(user, TokenPurpose.PASSWORD_RESET)
        clock.advance(minutes=5)

        with pytest.raises(TokenExpiredError):
            service.verify(token, TokenPurpose.PASSWORD_RESET)

    def test_expiry_survives_database_round_trip(self, tokens, user: User, db_session, clock: FakeClock) -> None:
        token = tokens.issue(user, TokenPurpose.EMAIL_VERIFICATION)
        db_session.commit()
        db_session.expire_all()

        reloaded = UserRepository(db_session).get_by_id(user.id)
        assert reloaded.email_verify_expires_at == clock.now + timedelta(hours=24)
        assert tokens.verify(token, TokenPurpose.EMAIL_VERIFICATION).id == user.id
