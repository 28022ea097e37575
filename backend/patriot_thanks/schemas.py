from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Request body whose camelCase wire keys map onto snake_case fields."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class HealthResponse(BaseModel):
    status: str


class RegisterRequest(WireModel):
    fname: str | None = None
    lname: str | None = None
    email: str | None = None
    password: str | None = None
    service_type: str | None = Field(default=None, alias="serviceType")
    military_branch: str | None = Field(default=None, alias="militaryBranch")
    address1: str | None = None
    address2: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    terms_accepted: bool = Field(default=False, alias="termsAccepted")
    hp_website: str | None = Field(default=None, alias="_hp_website")
    hp_timestamp: int | str | None = Field(default=None, alias="_hp_timestamp")


class LoginRequest(WireModel):
    email: str | None = None
    password: str | None = None


class TokenRequest(WireModel):
    token: str | None = None


class ResendVerificationRequest(WireModel):
    email: str | None = None


class UpdateEmailRequest(WireModel):
    new_email: str | None = Field(default=None, alias="newEmail")
    password: str | None = None


class AdminCodeRequest(WireModel):
    code: str | None = None


class FavoriteRequest(WireModel):
    item_id: str | None = Field(default=None, alias="itemId")
    type: str | None = None


class MigrationRequest(WireModel):
    dry_run: bool = Field(default=False, alias="dryRun")


class MigrationSummaryView(BaseModel):
    total: int
    migrated: int
    skipped: int
    errors: int
    success: bool


class MigrationResponse(BaseModel):
    success: bool
    dry_run: bool
    incentives: MigrationSummaryView
    chain_incentives: MigrationSummaryView
    logs: list[str] = Field(default_factory=list)
