"""
Tests for JWT service functionality.
"""

import jwt
from datetime import datetime, timedelta, timezone

from core.config import JWT_SECRET_KEY
from services.jwt_service import JWTService, jwt_service, TokenPayload


def _payload(**overrides) -> TokenPayload:
    data = {
        "sub": "42",
        "email": "customer@example.com",
        "role": "customer",
        "name": "Test Customer",
    }
    data.update(overrides)
    return TokenPayload(**data)


class TestJWTService:
    """Test JWT token creation and validation."""

    def test_create_access_token(self):
        token = jwt_service.create_access_token(_payload())
        assert isinstance(token, str)
        assert len(token) > 0

    def test_verify_token_valid(self):
        token = jwt_service.create_access_token(_payload(role="technician"))

        decoded = jwt_service.verify_token(token)

        assert decoded is not None
        assert decoded.sub == "42"
        assert decoded.email == "customer@example.com"
        assert decoded.role == "technician"
        assert decoded.iat is not None
        assert decoded.exp is not None
        assert decoded.exp > decoded.iat

    def test_verify_token_invalid(self):
        assert jwt_service.verify_token("invalid.token.here") is None

    def test_verify_token_wrong_secret(self):
        token = jwt.encode(
            {"sub": "42", "email": "x@example.com", "role": "customer", "name": "X"},
            "not-the-secret",
            algorithm=JWTService.ALGORITHM,
        )
        assert jwt_service.verify_token(token) is None

    def test_verify_token_expired(self):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {
                "sub": "42",
                "email": "x@example.com",
                "role": "customer",
                "name": "X",
                "iat": past,
                "exp": past + timedelta(minutes=5),
            },
            JWT_SECRET_KEY,
            algorithm=JWTService.ALGORITHM,
        )
        assert jwt_service.verify_token(token) is None

    def test_token_expiry_helpers(self):
        expiry = jwt_service.get_token_expiry()
        assert expiry > datetime.now(timezone.utc)
        assert not jwt_service.is_token_expired(expiry)
        assert jwt_service.is_token_expired(datetime.now(timezone.utc) - timedelta(seconds=1))
