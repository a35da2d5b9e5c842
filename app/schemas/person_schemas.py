from datetime import datetime
from typing import Optional

from pydantic import Field, ValidationInfo, field_validator, model_validator

from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from app.services.occurrence_calculator import InvalidBirthdayError, parse_birthday


def _validate_birthday(value: str) -> str:
    try:
        parse_birthday(value)
    except InvalidBirthdayError as e:
        raise ValueError(str(e)) from e
    return value


class CreatePersonRequest(BaseModel):
    """Request schema for creating a person"""

    first_name: str = Field(..., min_length=1, max_length=100, description="First name")
    last_name: str = Field(..., min_length=1, max_length=100, description="Last name")
    birthday: str = Field(..., description="Birthday in YYYY-MM-DD format")
    city: str = Field(..., min_length=1, max_length=100, description="City")
    state: Optional[str] = Field(None, max_length=100, description="State or region")
    country: str = Field(..., min_length=1, max_length=100, description="Country")

    @field_validator("birthday")
    def validate_birthday(cls, v: str) -> str:
        return _validate_birthday(v)


class UpdatePersonRequest(BaseModel):
    """Request schema for a partial person update"""

    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    birthday: Optional[str] = Field(None, description="Birthday in YYYY-MM-DD format")
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, min_length=1, max_length=100)

    @field_validator("first_name", "last_name", "birthday", "city", "country")
    def reject_null(cls, v: Optional[str], info: ValidationInfo) -> str:
        # Only state may be cleared; unset fields never reach this validator
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        if info.field_name == "birthday":
            return _validate_birthday(v)
        return v

    @model_validator(mode="after")
    def require_any_field(self) -> "UpdatePersonRequest":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class PersonResponse(BaseModel):
    """Response schema for person data"""

    id: str = Field(..., description="Person ID")
    first_name: str
    last_name: str
    birthday: str
    city: str
    state: Optional[str] = None
    country: str
    timezone: str = Field(..., description="Resolved IANA timezone")
    next_birthday_utc: datetime = Field(..., description="Next 9 AM local birthday, UTC")
    last_notification_year: int
