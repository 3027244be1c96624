"""Admin endpoint for manual enrollment recovery.

Replays a single enrollment that the automatic path could not complete.
Protected by the admin API key (``Authorization: Bearer <key>``).
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from enrollment.models.enums import OriginationSource
from enrollment.services.clickfunnels_client import ClickFunnelsClient, ClickFunnelsError
from enrollment.utils.logging import get_logger, log_enrollment_operation
from gateway.dependencies import get_clickfunnels, require_admin
from gateway.models.admin import RecoverEnrollmentRequest, RecoverEnrollmentResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(
        RecoverEnrollmentResponse(success=False, error=error).model_dump(exclude_none=True),
        status_code=status_code,
    )


@router.post(
    "/recover-enrollment",
    summary="Enroll an existing contact in a course",
    response_model=RecoverEnrollmentResponse,
    response_model_exclude_none=True,
    responses={
        400: {"description": "email or courseId missing"},
        401: {"description": "Missing or wrong admin key"},
        404: {"description": "No contact with this email"},
        500: {"description": "Enrollment failed"},
    },
)
async def recover_enrollment(
    request: RecoverEnrollmentRequest,
    clickfunnels: ClickFunnelsClient = Depends(get_clickfunnels),
) -> RecoverEnrollmentResponse | JSONResponse:
    email = (request.email or "").strip()
    course_id = (request.courseId or "").strip()
    if not email or not course_id:
        return _failure(400, "Email and courseId are required")

    try:
        contact = await clickfunnels.find_contact_by_email(email)
    except ClickFunnelsError as e:
        logger.error("Contact lookup failed during recovery for %s: %s", email, e)
        return _failure(500, str(e))

    if contact is None:
        return _failure(404, f"No contact found with email address: {email}")

    result = await clickfunnels.enroll(
        contact.id, course_id, OriginationSource.MANUAL_RECOVERY
    )
    log_enrollment_operation(
        logger,
        "recover_enrollment",
        contact_id=contact.id,
        course_id=course_id,
        result="failed" if not result.success else "success",
        error=result.error,
    )

    if not result.success:
        return _failure(500, result.error or "Unknown enrollment error")

    if result.already_enrolled:
        message = f"Contact is already enrolled in course {course_id}"
    else:
        message = f"Enrollment recovered for contact ID {contact.id} in course {course_id}"
    return RecoverEnrollmentResponse(
        success=True, message=message, alreadyEnrolled=result.already_enrolled
    )
