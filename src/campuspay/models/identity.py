"""Signed-in member identity supplied by the identity provider."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from campuspay.models.account import Role


class Identity(BaseModel):
    """The active member as seen by the core.

    Parameters
    ----------
    uid : str
        Stable user id issued by the identity provider.
    email : str
        Sign-in email.
    display_name : str
        Name shown to other members.  Defaults to the local part of
        ``email``.
    role : Role or None
        Role asserted by the identity provider, if any.  The core never
        derives a role from the email address.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    uid: str
    email: str = ""
    display_name: str = ""
    role: Role | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_display_name(cls, values: Any) -> Any:
        if not isinstance(values, dict) or values.get("display_name"):
            return values
        email = str(values.get("email") or "").strip()
        local = email.split("@", 1)[0] if email else ""
        return {**values, "display_name": local or "User"}

    @field_validator("uid")
    @classmethod
    def _non_empty_uid(cls, value: str) -> str:
        if not value:
            raise ValueError("uid must be non-empty")
        return value
