from datetime import datetime
from typing import Optional

from pydantic import Field, ValidationError, field_validator

from app.db.models import Person
from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from app.utils.datetime_utils import from_naive_utc, to_utc
from app.utils.errors import MalformedWorkItemError


class WorkItem(BaseModel):
    """Snapshot of a due person as carried on the dispatch channel."""

    person_id: str = Field(..., min_length=1, description="Person ID")
    first_name: str = Field(..., description="First name at scan time")
    last_name: str = Field(..., description="Last name at scan time")
    birthday: str = Field(..., description="Birthday in YYYY-MM-DD format")
    city: str = Field(..., description="City")
    state: Optional[str] = Field(None, description="State or region")
    country: str = Field(..., description="Country")
    next_birthday_utc: datetime = Field(..., description="Occurrence that made the person due")
    last_notification_year: int = Field(..., ge=0, description="Last notified year at scan time")
    reference_instant: datetime = Field(..., description="Scan reference instant")

    @field_validator("next_birthday_utc", "reference_instant")
    def ensure_utc(cls, v: datetime) -> datetime:
        return to_utc(v)

    @classmethod
    def from_person(cls, person: Person, reference_instant: datetime) -> "WorkItem":
        return cls(
            person_id=person.id,
            first_name=person.first_name,
            last_name=person.last_name,
            birthday=person.birthday,
            city=person.city,
            state=person.state,
            country=person.country,
            next_birthday_utc=from_naive_utc(person.next_birthday_utc),
            last_notification_year=person.last_notification_year,
            reference_instant=reference_instant,
        )

    def to_payload(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_payload(cls, payload: Optional[str]) -> "WorkItem":
        if payload is None or not str(payload).strip():
            raise MalformedWorkItemError("Empty work item payload")
        try:
            return cls.model_validate_json(payload)
        except ValidationError as e:
            raise MalformedWorkItemError(
                f"Invalid work item payload: {e.error_count()} validation error(s)"
            ) from e
