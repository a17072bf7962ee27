"""Bearer token verification for the HTTP surface."""

import jwt

from visioncore.services.exceptions import AuthError


def verify_token(token: str, secret: str, algorithm: str = "HS256") -> str:
    """Verify a signed identity token and return its user id (``sub`` claim).

    Args:
        token: Encoded token from the Authorization header
        secret: Shared signing secret (IDENTITY_TOKEN_SECRET)
        algorithm: Signing algorithm

    Returns:
        User id of the token subject

    Raises:
        AuthError: If the token is expired, malformed, badly signed or has no subject
    """
    if not secret:
        raise AuthError("Identity token secret is not configured")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            options={"require": ["sub"]},
        )
    except jwt.PyJWTError as e:
        raise AuthError(f"Invalid identity token: {e}") from e

    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise AuthError("Identity token has no subject")
    return user_id


def issue_token(user_id: str, secret: str, algorithm: str = "HS256") -> str:
    """Sign a token for ``user_id`` (local tooling and tests)."""
    return jwt.encode({"sub": user_id}, secret, algorithm=algorithm)
