"""Success-page endpoint: the buyer's browser returns here after checkout."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, RedirectResponse, Response

from enrollment.models.success import SuccessPageResult
from enrollment.services.success_handler import SuccessPageHandler
from enrollment.utils.logging import get_logger
from gateway.dependencies import get_success_handler

logger = get_logger(__name__)

router = APIRouter(tags=["checkout"])


@router.get(
    "/success",
    summary="Confirm a checkout and provision the buyer",
    description="""
Verifies that the checkout session is paid, then creates or updates the
buyer's contact and enrolls them in the purchased courses. Provisioning
failures never fail the request: they set `partialSuccess`.

Without `session_id` the buyer is redirected to the home page.
""",
    responses={
        200: {"model": SuccessPageResult, "description": "Reconciliation result"},
        307: {"description": "No session_id, redirect to home"},
    },
)
async def checkout_success(
    session_id: str | None = None,
    handler: SuccessPageHandler = Depends(get_success_handler),
) -> Response:
    if not session_id:
        return RedirectResponse(url="/", status_code=307)

    result = await handler.handle(session_id)
    logger.info(
        "Success page for %s: success=%s partial=%s enrolled=%s failed=%s",
        session_id,
        result.success,
        result.partial_success,
        result.enrolled_courses,
        result.failed_courses,
    )
    return JSONResponse(result.model_dump(mode="json", by_alias=True))
