# exam_portal/deps.py
import logging

from fastapi import Header, HTTPException
from sqlalchemy import select

from exam_portal.db.session import SessionLocal
from exam_portal.models.student_profile import StudentProfile
from exam_portal.services.access_service import AccessValidationService
from exam_portal.services.supa_auth import verify_bearer

logger = logging.getLogger(__name__)

# ----------------------------
# access service (opens its own short sessions)
# ----------------------------
def get_access_service() -> AccessValidationService:
    return AccessValidationService(SessionLocal)

# ----------------------------
# current student
# ----------------------------
async def get_current_student(
    authorization: str | None = Header(None),
):
    """
    Student profiles carry no auth user id, so the token's email claim is
    the join key. Auth uses a short-lived session to keep connections free.
    """
    try:
        claims = await verify_bearer(authorization)
    except ValueError as e:
        logger.info("[AUTH] verify_bearer failed: %s", e)
        raise HTTPException(status_code=401, detail="unauthorized")

    email = claims.get("email")
    if not email:
        raise HTTPException(status_code=401, detail="unauthorized")

    with SessionLocal() as db:
        prof = db.execute(
            select(StudentProfile).where(StudentProfile.email == email)
        ).scalar_one_or_none()
        if prof is not None:
            db.expunge(prof)

    if prof is None:
        logger.warning("[AUTH] no student profile for user=%s", claims["user_id"])
        raise HTTPException(status_code=403, detail={"message": "access_denied"})
    if prof.status == "blocked":
        raise HTTPException(status_code=403, detail={"message": "account_blocked"})

    return {
        "id": prof.student_id,
        "user_id": claims["user_id"],
        "email": email,
        "profile": prof,
    }
