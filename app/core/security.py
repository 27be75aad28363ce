"""Access token verification."""

import jwt
from fastapi import HTTPException, status
from jwt import InvalidTokenError

from app.core.config import settings


class TokenVerifier:
    """
    Verifies bearer tokens issued by the external identity service.

    Tokens are HS256 JWTs signed with ``settings.secret_key`` whose ``sub``
    claim is the user's id. Issuing tokens is not this service's job.

    :ivar secret_key: Key used to check token signatures.
    :type secret_key: str
    :ivar algorithm: Expected signing algorithm.
    :type algorithm: str
    """

    def __init__(self, secret_key: str | None = None, algorithm: str | None = None):
        self.secret_key = secret_key or settings.secret_key
        self.algorithm = algorithm or settings.algorithm

    def verify_token(self, token: str) -> dict:
        """
        Decode and validate ``token``.

        :param token: The raw JWT.
        :return: The decoded payload.
        :raises HTTPException: 401 when the token is malformed, expired or
            signed with another key.
        """
        try:
            return jwt.decode(
                token,
                key=self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["sub"]},
            )
        except InvalidTokenError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid authentication token: {str(e)}",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e


def create_access_token(user_id: str, secret_key: str | None = None, **claims) -> str:
    """Sign a token the way the identity service does; used by tests and scripts."""
    payload = {"sub": str(user_id), **claims}
    return jwt.encode(payload, secret_key or settings.secret_key, algorithm=settings.algorithm)
