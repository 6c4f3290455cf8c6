# exam_portal/services/supa_auth.py
from typing import Dict
import logging

from jose import JWTError, jwt
from exam_portal.config import settings

logger = logging.getLogger(__name__)

SUPABASE_JWT_SECRET = settings.supabase_jwt_secret
SUPABASE_ISSUER = settings.supabase_issuer
SUPABASE_JWT_AUDIENCE = settings.supabase_jwt_audience

if not SUPABASE_JWT_SECRET:
    raise RuntimeError("SUPABASE_JWT_SECRET is not set.")


async def verify_bearer(authorization: str | None) -> Dict[str, str | None]:
    """
    - takes the token out of `Authorization: Bearer <access_token>`
    - verifies it with the Supabase JWT secret (HS256)
    - returns the basic claims (sub, email)
    """
    if not authorization:
        raise ValueError("missing Authorization header")

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise ValueError("invalid Authorization header")

    token = parts[1].strip()
    if not token:
        raise ValueError("invalid Authorization header")

    decode_kwargs = {
        "key": SUPABASE_JWT_SECRET,
        "algorithms": ["HS256"],
        "options": {"verify_aud": bool(SUPABASE_JWT_AUDIENCE), "verify_iss": bool(SUPABASE_ISSUER)},
    }
    if SUPABASE_JWT_AUDIENCE:
        decode_kwargs["audience"] = SUPABASE_JWT_AUDIENCE   # "authenticated"
    if SUPABASE_ISSUER:
        decode_kwargs["issuer"] = SUPABASE_ISSUER           # "https://.../auth/v1"

    try:
        claims = jwt.decode(token, **decode_kwargs)
    except JWTError as e:
        logger.warning("[AUTH] JWT decode failed: %s", e)
        raise ValueError("invalid token") from e

    user_id = claims.get("sub")
    if not user_id:
        raise ValueError("invalid token: missing sub")

    return {
        "user_id": user_id,
        "email": claims.get("email"),
    }
