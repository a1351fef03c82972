"""
Tests for JWT tokens and password hashing - app/core/auth.py
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import jwt as pyjwt
import pytest

from app.core.auth import (
    TokenPayload,
    create_access_token,
    hash_password,
    verify_password,
    verify_token,
)
from app.core.config import settings


class TestAccessToken:

    @pytest.mark.unit
    def test_round_trip(self):
        token = create_access_token(7, "alice")
        payload = verify_token(token)

        assert isinstance(payload, TokenPayload)
        assert payload.user_id == 7
        assert payload.login == "alice"

    @pytest.mark.unit
    def test_expired_token_rejected(self):
        expired = pyjwt.encode(
            {
                "user_id": 7,
                "login": "alice",
                "exp": int((datetime.now(timezone.utc) - timedelta(minutes=1)).timestamp()),
            },
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )
        assert verify_token(expired) is None

    @pytest.mark.unit
    def test_foreign_signature_rejected(self):
        forged = pyjwt.encode(
            {"user_id": 1, "login": "root", "exp": 4102444800},
            "some-other-secret",
            algorithm="HS256",
        )
        assert verify_token(forged) is None

    @pytest.mark.unit
    def test_garbage_rejected(self):
        assert verify_token("not-a-jwt") is None

    @pytest.mark.unit
    def test_missing_claims_rejected(self):
        token = pyjwt.encode(
            {"exp": 4102444800},
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )
        assert verify_token(token) is None

    @pytest.mark.unit
    def test_cannot_issue_without_secret(self):
        with patch.object(settings, "JWT_SECRET_KEY", ""):
            with pytest.raises(ValueError):
                create_access_token(1, "alice")


class TestPasswordHashing:

    @pytest.mark.unit
    def test_hash_and_verify(self):
        stored = hash_password("s3cret")

        assert stored.startswith("pbkdf2_sha256$")
        assert "s3cret" not in stored
        assert verify_password("s3cret", stored) is True
        assert verify_password("wrong", stored) is False

    @pytest.mark.unit
    def test_salted(self):
        assert hash_password("same") != hash_password("same")

    @pytest.mark.unit
    def test_iterations_stored_with_hash(self):
        stored = hash_password("pw", iterations=1234)

        assert stored.split("$")[1] == "1234"
        # verification uses the stored count, not the current setting
        with patch.object(settings, "PASSWORD_HASH_ITERATIONS", 99):
            assert verify_password("pw", stored) is True

    @pytest.mark.unit
    @pytest.mark.parametrize("stored", [
        "",
        "plaintext",
        "md5$1$abc$def",
        "pbkdf2_sha256$notanumber$c2FsdA==$ZGlnZXN0",
    ])
    def test_malformed_hash_never_matches(self, stored: str):
        assert verify_password("anything", stored) is False
