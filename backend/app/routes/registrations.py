# backend/app/routes/registrations.py
"""
Registration routes

Thin HTTP plumbing around RegistrationService and UnitOfWork.
All business logic is delegated; DomainException subclasses are
translated through ``to_http_exception()``.

Endpoints:
    POST /registrations - Register a student into a slot
    GET /registrations - List registrations of a term
    GET /registrations/{registration_id} - Registration details
    DELETE /registrations/{registration_id} - Cancel a registration
    PATCH /registrations/{registration_id}/status - Change registration status
    GET /students/{student_id}/registrations - Registrations of one student
    GET /students/{student_id}/available-instructors - Instructors matching a student
    GET /users/lookup - Find an admin or instructor by email
    GET /health - Repository health check
    GET /dashboard - Entity counts
"""

import logging
from typing import Any, Dict, List, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status

from ..api.dependencies import (
    get_current_admin_optional,
    get_current_user_id,
    get_registration_service,
    get_unit_of_work,
    require_admin_for_overrides,
)
from ..core.exceptions import DomainException
from ..models.instructor import Admin
from ..repositories.unit_of_work import UnitOfWork
from ..schemas.registration import (
    HealthResponse,
    RegistrationCancel,
    RegistrationCancelResponse,
    RegistrationCreate,
    RegistrationCreateResponse,
    RegistrationDetailsResponse,
    RegistrationStatusResponse,
    RegistrationStatusUpdate,
)
from ..services.registration_service import RegistrationService

logger = logging.getLogger(__name__)

# No prefix here, it is added when mounting in main.py
router = APIRouter(tags=["registrations"])

TERM_HINT = "Pins the term when the registration id exists in more than one"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# Registrations


@router.post(
    "/registrations",
    response_model=RegistrationCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_registration(
    payload: RegistrationCreate,
    user_id: str = Depends(get_current_user_id),
    admin: Optional[Admin] = Depends(get_current_admin_optional),
    service: RegistrationService = Depends(get_registration_service),
) -> Dict[str, Any]:
    """Register a student into a group class or a private lesson slot."""
    require_admin_for_overrides(admin, user_id, skip_capacity_check=payload.skip_capacity_check)
    try:
        return await service.process_registration(
            payload.to_payload(), user_id, skip_capacity_check=payload.skip_capacity_check
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/registrations", response_model=List[Dict[str, Any]])
async def list_registrations(
    school_year: Optional[str] = Query(None, description="Defaults to the current school year"),
    trimester: Optional[str] = Query(None, description="Defaults to the current trimester"),
    service: RegistrationService = Depends(get_registration_service),
) -> List[Dict[str, Any]]:
    try:
        return await service.get_registrations(school_year, trimester)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/registrations/{registration_id}", response_model=RegistrationDetailsResponse)
async def get_registration(
    registration_id: str,
    school_year: Optional[str] = Query(None, description=TERM_HINT),
    trimester: Optional[str] = Query(None, description=TERM_HINT),
    service: RegistrationService = Depends(get_registration_service),
) -> Dict[str, Any]:
    try:
        return await service.get_registration_details(
            registration_id, school_year=school_year, trimester=trimester
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.delete("/registrations/{registration_id}", response_model=RegistrationCancelResponse)
async def cancel_registration(
    registration_id: str,
    response: Response,
    payload: Optional[RegistrationCancel] = Body(None),
    school_year: Optional[str] = Query(None, description=TERM_HINT),
    trimester: Optional[str] = Query(None, description=TERM_HINT),
    user_id: str = Depends(get_current_user_id),
    admin: Optional[Admin] = Depends(get_current_admin_optional),
    service: RegistrationService = Depends(get_registration_service),
) -> Dict[str, Any]:
    """
    Cancel a registration.

    Inside the no-cancel window the response is 202 with
    ``status: pending_approval`` and nothing is changed.
    Only admins may pass ``manager_approved``.
    """
    request = payload or RegistrationCancel()
    require_admin_for_overrides(admin, user_id, manager_approved=request.manager_approved)
    try:
        result = await service.cancel_registration(
            registration_id,
            request.reason,
            user_id,
            manager_approved=request.manager_approved,
            school_year=school_year,
            trimester=trimester,
        )
    except DomainException as e:
        handle_domain_exception(e)

    if result.get("approval_required"):
        response.status_code = status.HTTP_202_ACCEPTED
    return result


@router.patch(
    "/registrations/{registration_id}/status", response_model=RegistrationStatusResponse
)
async def update_registration_status(
    registration_id: str,
    payload: RegistrationStatusUpdate,
    school_year: Optional[str] = Query(None, description=TERM_HINT),
    trimester: Optional[str] = Query(None, description=TERM_HINT),
    user_id: str = Depends(get_current_user_id),
    service: RegistrationService = Depends(get_registration_service),
) -> Dict[str, Any]:
    try:
        return await service.update_registration_status(
            registration_id, payload.status, user_id, school_year=school_year, trimester=trimester
        )
    except DomainException as e:
        handle_domain_exception(e)


# Students and users


@router.get("/students/{student_id}/registrations", response_model=List[Dict[str, Any]])
async def get_student_registrations(
    student_id: str,
    service: RegistrationService = Depends(get_registration_service),
) -> List[Dict[str, Any]]:
    try:
        return await service.get_student_registrations(student_id)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/students/{student_id}/available-instructors", response_model=List[Dict[str, Any]])
async def get_available_instructors(
    student_id: str,
    instrument: Optional[str] = Query(None),
    day: Optional[str] = Query(None),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> List[Dict[str, Any]]:
    try:
        instructors = await uow.find_available_instructors(student_id, instrument, day)
    except DomainException as e:
        handle_domain_exception(e)
    return [instructor.to_dict() for instructor in instructors]


@router.get("/users/lookup", response_model=Dict[str, Any])
async def lookup_user(
    email: str = Query(..., min_length=3),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> Dict[str, Any]:
    match = await uow.find_user_by_email(email)
    if match is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": f"No user with email {email}", "code": "USER_NOT_FOUND"},
        )
    return match.to_dict()


# Operations


@router.get("/health", response_model=HealthResponse)
async def health(response: Response, uow: UnitOfWork = Depends(get_unit_of_work)) -> Dict[str, Any]:
    report = await uow.get_health_status()
    if not report["healthy"]:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return report


@router.get("/dashboard", response_model=Dict[str, Any])
async def dashboard(uow: UnitOfWork = Depends(get_unit_of_work)) -> Dict[str, Any]:
    return await uow.get_dashboard_data()
