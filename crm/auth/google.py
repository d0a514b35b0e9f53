"""Google sign-in: verify the ID token the frontend obtained from Google."""

import logging
from typing import Any, Dict

from google.auth.transport.requests import Request
from google.oauth2 import id_token

from crm.core.errors import AuthError

logger = logging.getLogger(__name__)


class GoogleIdentityVerifier:
    def __init__(self, client_id: str):
        self.client_id = client_id

    def verify(self, token: str) -> Dict[str, Any]:
        """Return the verified token payload (email, name, picture, ...)"""
        try:
            payload = id_token.verify_oauth2_token(token, Request(), audience=self.client_id)
        except ValueError as e:
            logger.warning("Rejected Google ID token: %s", e)
            raise AuthError("Invalid Google token", code="INVALID_GOOGLE_TOKEN")

        if not payload.get("email"):
            raise AuthError("Google token has no email", code="INVALID_GOOGLE_TOKEN")
        return payload
