"""Result returned to the buyer-facing success page."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SuccessPageResult(BaseModel):
    """Outcome of the synchronous success-page reconciliation.

    Serialized with camelCase keys (``model_dump(by_alias=True)``).
    ``partial_success`` means the payment succeeded but provisioning did not.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = False
    partial_success: bool = False
    customer_email: str | None = None
    has_enrollment: bool = False
    enrolled_courses: list[str] = Field(default_factory=list)
    failed_courses: list[str] = Field(default_factory=list)
    error: str | None = None
    invoice_url: str | None = None
    invoice_pdf: str | None = None
