"""Contact models for the ClickFunnels CRM."""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ContactUpsert(BaseModel):
    """Data for a find-or-create of a contact keyed by email.

    Only fields that are set are sent to ClickFunnels; absent fields never
    overwrite existing values.
    """

    model_config = ConfigDict(strict=True)

    email: str = Field(..., description="Email address (exact match key)")
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    tags: list[str] | None = Field(
        default=None, description="Tags to add (union with existing)"
    )
    custom_fields: dict[str, str] | None = Field(
        default=None, description="Custom fields to set (overwrite per key)"
    )

    @field_validator("email")
    @classmethod
    def _email_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("email is required")
        return value

    @field_validator("first_name", "last_name", "phone")
    @classmethod
    def _blank_is_absent(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class Contact(BaseModel):
    """A contact record as returned by ClickFunnels."""

    id: int
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, str] = Field(default_factory=dict)


class UpsertResult(BaseModel):
    """Result of a contact upsert. Check ``success`` before ``contact_id``."""

    success: bool
    contact_id: int | None = None
    created: bool = False
    error: str | None = None
