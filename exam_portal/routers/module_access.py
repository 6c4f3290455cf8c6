# exam_portal/routers/module_access.py

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from exam_portal.deps import get_access_service, get_current_student
from exam_portal.schemas.access import (
    AttemptOverviewResponse,
    HeartbeatResponse,
    ModuleAccessResponse,
    ModuleCompleteResponse,
    ModuleOverviewItem,
)
from exam_portal.services.access_service import (
    AccessForbidden,
    AccessValidationService,
    AttemptNotFound,
    StoreUnavailable,
    ValidationResult,
)
from exam_portal.services.ui_advisory import (
    Advisory,
    advise,
    advise_access_denied,
    advise_store_unavailable,
)


router = APIRouter(prefix="/api/attempts", tags=["module-access"])

# FORBIDDEN and ATTEMPT_NOT_FOUND look the same from outside
ACCESS_DENIED = {"message": "access_denied"}
TRY_AGAIN = {"message": "try_again"}


def _access_response(result: ValidationResult) -> ModuleAccessResponse:
    return ModuleAccessResponse(
        allowed=result.allowed,
        reason=result.reason.value if result.reason else None,
        remaining_seconds=result.remaining_seconds,
        redirect_hint=result.redirect_hint,
        module_status=result.module_status.value if result.module_status else None,
        started_at=result.started_at,
        completed_at=result.completed_at,
        attempt_remaining_seconds=result.attempt_remaining_seconds,
        overall_deadline=result.overall_deadline,
        server_time=result.server_time,
    )


def _heartbeat_response(advisory: Advisory) -> HeartbeatResponse:
    return HeartbeatResponse(
        screen=advisory.screen.value,
        phase=advisory.phase.value,
        remaining_seconds=advisory.remaining_seconds,
        countdown=advisory.countdown,
        resync_after_seconds=advisory.resync_after_seconds,
        message=advisory.message,
        redirect_hint=advisory.redirect_hint,
    )


# ---- module page load: enter / resume ----

@router.post("/{attempt_id}/modules/{module_type}/access", response_model=ModuleAccessResponse)
def validate_module_access(
    attempt_id: str,
    module_type: str,
    student=Depends(get_current_student),
    service: AccessValidationService = Depends(get_access_service),
):
    try:
        result = service.validate_access(attempt_id, module_type, student["id"])
    except (AccessForbidden, AttemptNotFound):
        raise HTTPException(status_code=403, detail=ACCESS_DENIED)
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail=TRY_AGAIN)
    return _access_response(result)


# ---- module submission ----

@router.post("/{attempt_id}/modules/{module_type}/complete", response_model=ModuleCompleteResponse)
def complete_module(
    attempt_id: str,
    module_type: str,
    student=Depends(get_current_student),
    service: AccessValidationService = Depends(get_access_service),
):
    try:
        result = service.complete_module(attempt_id, module_type, student["id"])
    except (AccessForbidden, AttemptNotFound):
        raise HTTPException(status_code=403, detail=ACCESS_DENIED)
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail=TRY_AGAIN)

    body = ModuleCompleteResponse(
        success=result.success,
        outcome=result.outcome.value,
        completed_at=result.completed_at,
        attempt_status=result.attempt_status.value,
        redirect_hint=result.redirect_hint,
    )
    if not result.success:
        # 409: the module is not in a state that can be submitted
        return JSONResponse(status_code=409, content=body.model_dump(mode="json"))
    return body


# ---- periodic re-check while a module is open ----
# POST: it runs the same validation as /access and may start the timer

@router.post("/{attempt_id}/modules/{module_type}/heartbeat", response_model=HeartbeatResponse)
def module_heartbeat(
    attempt_id: str,
    module_type: str,
    student=Depends(get_current_student),
    service: AccessValidationService = Depends(get_access_service),
):
    try:
        result = service.validate_access(attempt_id, module_type, student["id"])
    except (AccessForbidden, AttemptNotFound):
        body = _heartbeat_response(advise_access_denied())
        return JSONResponse(status_code=403, content=body.model_dump(mode="json"))
    except StoreUnavailable:
        body = _heartbeat_response(advise_store_unavailable(service.cfg))
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
    return _heartbeat_response(advise(result, service.cfg))


# ---- module selector ----

@router.get("/{attempt_id}", response_model=AttemptOverviewResponse)
def attempt_overview(
    attempt_id: str,
    student=Depends(get_current_student),
    service: AccessValidationService = Depends(get_access_service),
):
    try:
        overview = service.attempt_overview(attempt_id, student["id"])
    except (AccessForbidden, AttemptNotFound):
        raise HTTPException(status_code=403, detail=ACCESS_DENIED)
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail=TRY_AGAIN)

    return AttemptOverviewResponse(
        attempt_id=overview.attempt_id,
        status=overview.status.value,
        server_time=overview.server_time,
        overall_deadline=overview.overall_deadline,
        attempt_remaining_seconds=overview.attempt_remaining_seconds,
        modules=[
            ModuleOverviewItem(
                module_type=m.module_type.value,
                status=m.status.value,
                sequence_index=m.sequence_index,
                allowed_duration=m.allowed_duration,
                available=m.available,
                remaining_seconds=m.remaining_seconds,
                started_at=m.started_at,
                completed_at=m.completed_at,
            )
            for m in overview.modules
        ],
    )
