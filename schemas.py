# schemas.py
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

WILDCARD = "all"


def normalize_tags(value: Any) -> list[str]:
    """Accept ``"a, b"``, ``["A", "b"]`` or a ``{tag: true}`` map; lowercase."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, dict):
        items = [k for k, enabled in value.items() if enabled]
    else:
        items = list(value)
    return [str(item).strip().lower() for item in items if str(item).strip()]


# --------------------------------------------------------------------
# Stored documents
# --------------------------------------------------------------------

class UseEntry(BaseModel):
    user_id: str
    at: str
    claim_id: str | None = None


class PromoCode(BaseModel):
    code: str
    mode: Literal["slot", "platform"] = "slot"
    slot_id: str | None = None
    slot_name: str | None = None
    platform: str | None = None
    amount: Any = None
    created_by: str = "admin"
    created_at: str | None = None
    custom: bool = False
    max_uses: int = Field(default=1, ge=1)
    used_count: int = Field(default=0, ge=0)
    expires_at: str | None = None
    revoked: bool = False
    used_by: list[UseEntry] = Field(default_factory=list)
    last_used_by: str | None = None
    last_used_at: str | None = None

    @field_validator("used_by", mode="before")
    @classmethod
    def _used_by_list(cls, value):
        return value or []


class Slot(BaseModel):
    id: str = ""
    name: str | None = None
    platform: str | None = None
    required_amount: Any = None
    enabled: bool = True
    duration: int | float | str | None = None
    label_mode: str | None = None
    features: dict[str, bool] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.id or (self.platform or "")


class Credential(BaseModel):
    id: str
    slots: list[str] = Field(default_factory=list)
    platforms: list[str] = Field(default_factory=list)
    locked: bool = False
    used: int = 0
    max_usage: int = 0
    expires_at: str | None = None

    email: str | None = None
    password: str | None = None
    totp_secret: str | None = None
    invite_link: str | None = None

    @field_validator("slots", "platforms", mode="before")
    @classmethod
    def _tags(cls, value):
        return normalize_tags(value)

    @field_validator("used", "max_usage", mode="before")
    @classmethod
    def _count(cls, value):
        return int(value or 0)

    @property
    def payload(self) -> dict[str, str | None]:
        """The part of the credential a lease mirrors."""
        return {"email": self.email, "password": self.password}

    @property
    def has_payload(self) -> bool:
        return bool(self.email or self.password)

    @property
    def usage_exhausted(self) -> bool:
        return self.max_usage > 0 and self.used >= self.max_usage


class Transaction(BaseModel):
    """A lease: the binding of one redeemed code to one credential."""

    code: str
    user_id: str | None = None
    platform: str | None = None
    slot_id: str | None = None
    slot_name: str | None = None
    label_mode: str | None = None
    headline: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    created_at: str | None = None
    credential_id: str | None = None
    last_email: str | None = None
    last_password: str | None = None
    invite_link: str | None = None
    hidden: bool = False
    totp_delivered: bool = False
    mail_code_delivered: bool = False
    last_mail_code: str | None = None

    @property
    def snapshot(self) -> dict[str, str | None]:
        return {"email": self.last_email, "password": self.last_password}


# --------------------------------------------------------------------
# Request / response bodies
# --------------------------------------------------------------------

class ClaimIn(BaseModel):
    code: str
    user_id: str


class CodeIn(BaseModel):
    code: str


class GenCodeIn(BaseModel):
    mode: str
    slotId: str | None = None
    platform: str | None = None
    maxUses: int = Field(default=1, ge=1)
    expiresAt: str | None = None
    customCode: str | None = None
    createdBy: str = "admin"


class LeaseOut(BaseModel):
    success: bool = True
    code: str
    platform: str | None = None
    slot_id: str | None = None
    slot_name: str | None = None
    headline: str | None = None
    label_mode: str | None = None
    last_email: str | None = None
    last_password: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    user_id: str | None = None
    invite_link: str | None = None
    features: dict[str, bool] = Field(default_factory=dict)


class ClaimOut(LeaseOut):
    outcome: str
    assigned: bool


class RefreshOut(BaseModel):
    success: bool = True
    changed: bool
    last_email: str | None = None
    last_password: str | None = None


class TimeCodeOut(BaseModel):
    success: bool = True
    otp: str
    remaining: int


class MailCodeOut(BaseModel):
    success: bool = True
    mail_code: str
