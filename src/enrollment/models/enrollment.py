"""Enrollment models: single results, batch results and idempotency keys."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class IdempotencyKey(BaseModel):
    """(transaction, contact, course) triple used to suppress duplicate attempts."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    contact_id: int
    course_id: str

    def __str__(self) -> str:
        return f"{self.transaction_id}_{self.contact_id}_{self.course_id}"


class EnrollmentResult(BaseModel):
    """Outcome of one enrollment request.

    ``already_enrolled`` implies ``success``: an existing enrollment is the
    desired end state.
    """

    success: bool
    already_enrolled: bool = False
    data: dict[str, Any] | None = None
    error: str | None = None


class EnrollmentBatchResult(BaseModel):
    """Per-course outcomes for one retry-orchestrator run."""

    succeeded: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    attempts: dict[str, int] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return not self.failed
