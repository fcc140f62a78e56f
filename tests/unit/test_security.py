import pytest
from jose import jwt

from medcheck.core.config import settings
from medcheck.core.security import create_access_token, decode_access_token, get_password_hash, verify_password


def test_password_hash_and_verify():
    plain = "StrongPass123"
    hashed = get_password_hash(plain)

    assert hashed != plain
    assert verify_password(plain, hashed) is True
    assert verify_password("WrongPass123", hashed) is False


def test_staff_token_round_trip():
    token = create_access_token(subject="7", extra_claims={"email": "reviewer@example.com"})

    payload = decode_access_token(token)

    assert payload["sub"] == "7"
    assert payload["email"] == "reviewer@example.com"


def test_token_without_staff_scope_is_rejected():
    token = jwt.encode({"sub": "7"}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

    with pytest.raises(ValueError):
        decode_access_token(token)
