"""Token service for signing and decoding bearer JWTs."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from django.conf import settings
from rest_framework.exceptions import AuthenticationFailed


class TokenService:
    """Issue and decode access tokens; the ``sub`` claim is the user id."""

    ACCESS_TTL = timedelta(minutes=15)
    ALGORITHM = "HS256"

    @classmethod
    def generate_access_token(cls, user, ttl: timedelta | None = None) -> str:
        """Return a signed access token for ``user``."""

        now = datetime.now(timezone.utc)
        exp = now + (ttl or cls.ACCESS_TTL)
        payload = {
            "sub": str(user.pk),
            "jti": str(uuid.uuid4()),
            "exp": int(exp.timestamp()),
            "iat": int(now.timestamp()),
            "type": "access",
        }
        return jwt.encode(payload, settings.SECRET_KEY, algorithm=cls.ALGORITHM)

    @classmethod
    def decode_token(cls, token: str, expected_type: str | None = None) -> dict[str, Any]:
        """Decode and validate a JWT; optionally enforce token type."""

        try:
            payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[cls.ALGORITHM])
        except jwt.ExpiredSignatureError as exc:
            raise AuthenticationFailed("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthenticationFailed("Invalid token") from exc

        if expected_type and payload.get("type") != expected_type:
            raise AuthenticationFailed("Invalid token type")

        return payload


__all__ = ["TokenService"]
