"""
Staff bearer tokens
"""

from datetime import timedelta

import pytest
from jose import jwt

from boxoffice.core.exceptions import AuthenticationError
from boxoffice.core.security import SecurityManager


@pytest.fixture
def security(settings):
    return SecurityManager(settings)


@pytest.mark.unit
class TestSecurityManager:

    def test_token_round_trip(self, security):
        token = security.create_access_token("scanner-7")

        payload = security.decode_token(token)

        assert payload["sub"] == "scanner-7"
        assert payload["role"] == "staff"
        assert payload["type"] == "access"

    def test_expired_token(self, security):
        token = security.create_access_token("scanner-7", expires_delta=timedelta(seconds=-1))

        with pytest.raises(AuthenticationError):
            security.decode_token(token)

    def test_wrong_signature(self, security, settings):
        forged = jwt.encode({"sub": "intruder", "type": "access"}, "another-secret", algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(AuthenticationError):
            security.decode_token(forged)

    def test_non_access_token(self, security, settings):
        token = jwt.encode({"sub": "scanner-7", "type": "refresh"}, settings.jwt_secret, algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(AuthenticationError) as exc_info:
            security.decode_token(token)
        assert exc_info.value.status_code == 401
