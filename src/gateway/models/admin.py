"""API models for the admin enrollment recovery endpoint."""

from pydantic import BaseModel, ConfigDict, Field


class RecoverEnrollmentRequest(BaseModel):
    """Request to enroll an existing contact in a course by hand.

    Both fields are required; they are optional here so a missing field is
    answered with 400 rather than a validation error.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [{"email": "jan@example.nl", "courseId": "eWbLVk"}]
        },
    )

    email: str | None = Field(default=None, description="Email of the ClickFunnels contact")
    courseId: str | None = Field(default=None, description="Course ID to enroll in")


class RecoverEnrollmentResponse(BaseModel):
    success: bool
    message: str | None = None
    alreadyEnrolled: bool | None = None
    error: str | None = None
