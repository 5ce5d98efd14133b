from dataclasses import replace

import jwt
import pytest

from storefront.auth import AuthGate, Caller, Role, bearer_token, check_password, hash_password
from storefront.errors import InvalidCredential, Unauthenticated, Unauthorized


def test_token_round_trip(settings):
    gate = AuthGate(settings)
    token = gate.issue_token("alice", "alice@example.com", Role.USER)

    caller = gate.resolve(token)

    assert caller == Caller(identity="alice@example.com", role=Role.USER, username="alice")
    assert not caller.is_admin


def test_admin_role_survives_round_trip(settings):
    gate = AuthGate(settings)
    caller = gate.resolve(gate.issue_token("root", "root@example.com", Role.ADMIN))
    assert caller.is_admin


def test_missing_token(settings):
    with pytest.raises(Unauthenticated):
        AuthGate(settings).resolve(None)
    with pytest.raises(Unauthenticated):
        AuthGate(settings).resolve("")


def test_token_signed_with_other_secret(settings):
    token = AuthGate(replace(settings, jwt_secret="other")).issue_token("a", "a@example.com", Role.ADMIN)
    with pytest.raises(InvalidCredential):
        AuthGate(settings).resolve(token)


def test_expired_token(settings):
    token = AuthGate(replace(settings, token_ttl_seconds=-60)).issue_token("a", "a@example.com", Role.USER)
    with pytest.raises(InvalidCredential):
        AuthGate(settings).resolve(token)


def test_garbage_token(settings):
    with pytest.raises(InvalidCredential):
        AuthGate(settings).resolve("not-a-jwt")


@pytest.mark.parametrize(
    "claims",
    [
        {"username": "x", "role": "USER"},
        {"username": "x", "email": "x@example.com", "role": "superuser"},
    ],
)
def test_token_with_bad_claims(settings, claims):
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    with pytest.raises(InvalidCredential):
        AuthGate(settings).resolve(token)


def test_require_admin():
    Caller("root@example.com", Role.ADMIN).require(Role.ADMIN)
    Caller("a@example.com", Role.USER).require(Role.USER)
    with pytest.raises(Unauthorized):
        Caller("a@example.com", Role.USER).require(Role.ADMIN)


def test_can_access():
    alice = Caller("alice@example.com", Role.USER)
    assert alice.can_access("alice@example.com")
    assert not alice.can_access("bob@example.com")
    assert Caller("root@example.com", Role.ADMIN).can_access("bob@example.com")


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc.def", "abc.def"),
        ("bearer abc", "abc"),
        ("Basic abc", None),
        ("Bearer ", None),
        ("", None),
        (None, None),
    ],
)
def test_bearer_token(header, expected):
    assert bearer_token(header) == expected


def test_password_hashing():
    hashed = hash_password("s3cret!")
    assert hashed != "s3cret!"
    assert check_password("s3cret!", hashed)
    assert not check_password("wrong", hashed)
