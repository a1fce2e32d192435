import logging
from dataclasses import dataclass
from typing import Protocol

from firebase_admin import App, auth

from intervuo.system.exceptions import UnauthorizedException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    uid: str
    email: str | None = None
    name: str | None = None


class TokenVerifier(Protocol):
    def verify(self, token: str) -> AuthenticatedUser: ...


class FirebaseTokenVerifier:
    def __init__(self, app: App):
        self.app = app

    def verify(self, token: str) -> AuthenticatedUser:
        try:
            claims = auth.verify_id_token(token, app=self.app)
        except (ValueError, auth.InvalidIdTokenError, auth.ExpiredIdTokenError,
                auth.RevokedIdTokenError, auth.CertificateFetchError) as e:
            logger.warning(f"Rejected ID token: {e}")
            raise UnauthorizedException("Invalid or expired ID token") from e
        return AuthenticatedUser(
            uid=claims["uid"],
            email=claims.get("email"),
            name=claims.get("name"),
        )
