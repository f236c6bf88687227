"""Pydantic models for the appointment action-link endpoint."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lifecycle.services.appointment_state import AppointmentAction


class AppointmentActionRequest(BaseModel):
    """Body of POST /api/appointments/confirm."""
    model_config = ConfigDict(extra="ignore")

    token: str = Field(min_length=1, max_length=128)
    action: str = Field(min_length=1, max_length=32)

    @field_validator("token")
    @classmethod
    def strip_token(cls, v: str) -> str:
        """Reject tokens that are only whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("token must not be blank")
        return v


class AppointmentActionResponse(BaseModel):
    success: bool
    action: AppointmentAction
    status: str
    message: str
