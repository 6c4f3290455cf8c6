# exam_portal/routers/auth.py
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from exam_portal.deps import get_current_student
from exam_portal.models.student_profile import StudentProfile

router = APIRouter(prefix="/api/auth", tags=["auth"])

# ---------- Schemas ----------
class MeOut(BaseModel):
    student_id: str
    email: str
    name: str | None = None
    center_id: str | None = None
    status: Literal["active", "blocked"]

# ---------- Endpoints ----------
@router.get("/me", response_model=MeOut, response_model_exclude_none=True)
def me(student=Depends(get_current_student)):
    """
    Currently signed-in student.
    - auth: Supabase access token (Authorization: Bearer <token>)
    - the token's email claim is matched against student_profiles
    """
    profile: StudentProfile = student["profile"]
    return MeOut(
        student_id=profile.student_id,
        email=profile.email,
        name=profile.name,
        center_id=profile.center_id,
        status=profile.status,
    )

@router.post("/logout", status_code=204)
def logout():
    """
    No server session. The client calls supabase.auth.signOut();
    this endpoint only returns 204 for the UX flow.
    """
    return
