"""
Test suite for access token verification and security settings.

Test Categories:
- Token round trip (subject, email and role claims)
- Token rejection (expired, wrong secret, malformed, bad subject, audience)
- Settings guards for production deployments
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt
from pydantic import ValidationError

from storefront.core.config import DEFAULT_AUTH_SECRET, Settings
from storefront.core.security import (
    TokenError,
    create_access_token,
    decode_access_token,
)


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


class TestAccessTokens:
    def test_round_trip(self, test_settings, user_id):
        token = create_access_token(user_id, email="budi@example.com", settings=test_settings)

        user = decode_access_token(token, settings=test_settings)

        assert user.id == user_id
        assert user.email == "budi@example.com"
        assert user.role == "authenticated"

    def test_token_without_email(self, test_settings, user_id):
        token = create_access_token(user_id, settings=test_settings)

        user = decode_access_token(token, settings=test_settings)

        assert user.email is None

    def test_expired_token(self, test_settings, user_id):
        token = create_access_token(
            user_id,
            expires_delta=timedelta(seconds=-10),
            settings=test_settings,
        )

        with pytest.raises(TokenError) as exc_info:
            decode_access_token(token, settings=test_settings)

        assert exc_info.value.code == "TOKEN_EXPIRED"

    def test_wrong_secret(self, test_settings, user_id):
        token = jwt.encode(
            {"sub": str(user_id), "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            "some-other-secret",
            algorithm="HS256",
        )

        with pytest.raises(TokenError) as exc_info:
            decode_access_token(token, settings=test_settings)

        assert exc_info.value.code == "TOKEN_INVALID"

    @pytest.mark.parametrize("token", ["not-a-jwt", "a.b.c"])
    def test_malformed_token(self, test_settings, token):
        with pytest.raises(TokenError):
            decode_access_token(token, settings=test_settings)

    def test_empty_token(self, test_settings):
        with pytest.raises(TokenError) as exc_info:
            decode_access_token("", settings=test_settings)

        assert exc_info.value.code == "EMPTY_TOKEN"

    def test_subject_must_be_uuid(self, test_settings):
        token = jwt.encode(
            {"sub": "user-42", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            test_settings.auth_jwt_secret,
            algorithm=test_settings.auth_jwt_algorithm,
        )

        with pytest.raises(TokenError) as exc_info:
            decode_access_token(token, settings=test_settings)

        assert exc_info.value.code == "TOKEN_INVALID"

    def test_audience_enforced_when_configured(self, test_settings, user_id):
        other = test_settings.model_copy(update={"auth_jwt_audience": "service-role"})
        token = create_access_token(user_id, settings=other)
        strict = test_settings.model_copy(update={"auth_jwt_audience": "authenticated"})

        with pytest.raises(TokenError):
            decode_access_token(token, settings=strict)

        accepted = create_access_token(user_id, settings=strict)
        assert decode_access_token(accepted, settings=strict).id == user_id


class TestSecuritySettings:
    def test_default_secret_rejected_in_production(self):
        with pytest.raises(ValidationError):
            Settings(
                environment="production",
                auth_jwt_secret=DEFAULT_AUTH_SECRET,
                midtrans_server_key="key",
            )

    def test_signature_check_required_in_production(self):
        with pytest.raises(ValidationError):
            Settings(
                environment="production",
                auth_jwt_secret="a-real-production-secret-value",
                midtrans_verify_signature=False,
            )

    def test_signature_check_may_be_disabled_in_development(self):
        settings = Settings(environment="development", midtrans_verify_signature=False)

        assert not settings.midtrans_verify_signature

    def test_database_url_scheme(self):
        with pytest.raises(ValidationError):
            Settings(database_url="mysql://localhost/store")

    def test_currency_normalized(self):
        assert Settings(currency="idr").currency == "IDR"
