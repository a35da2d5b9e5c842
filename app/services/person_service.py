from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from fastapi import Depends
from sqlalchemy import select, and_
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.models import BIRTHDAY_REMINDER_PARTITION, Person
from app.db.session import get_sync_session
from app.schemas.person_schemas import (
    CreatePersonRequest,
    PersonResponse,
    UpdatePersonRequest,
)
from app.services.occurrence_calculator import calculate_next_birthday_utc
from app.services.timezone_resolver import resolve_timezone
from app.utils.datetime_utils import (
    from_naive_utc,
    get_current_year,
    to_naive_utc,
    to_utc,
    utc_now,
)
from app.utils.errors import NotFoundError, StorageUnavailableError
from app.utils.logging import get_logger

logger = get_logger()

LOCATION_FIELDS = ("city", "state", "country")


class PersonService:
    """Storage operations for persons: CRUD, the due-occurrence range query, and the notify commit"""

    def __init__(self, db_session: Session):
        self.db = db_session

    # Core CRUD Operations
    async def get_person_by_id(self, person_id: str) -> Optional[Person]:
        """Get person by ID or return None if not found"""
        result = self.db.execute(select(Person).where(Person.id == person_id))
        return result.scalar_one_or_none()

    async def create_person(
        self,
        person_data: CreatePersonRequest,
        reference_instant: Optional[datetime] = None,
    ) -> PersonResponse:
        """Create a person; the first occurrence is computed and the notified year starts at 0"""
        next_birthday_utc = calculate_next_birthday_utc(
            person_data.birthday,
            person_data.city,
            person_data.state,
            person_data.country,
            reference_instant,
        )

        new_person = Person(
            first_name=person_data.first_name,
            last_name=person_data.last_name,
            birthday=person_data.birthday,
            city=person_data.city,
            state=person_data.state,
            country=person_data.country,
            reminder_partition=BIRTHDAY_REMINDER_PARTITION,
            next_birthday_utc=to_naive_utc(next_birthday_utc),
            last_notification_year=0,
        )

        self.db.add(new_person)
        self.db.commit()
        self.db.refresh(new_person)

        logger.info(f"Created person: {new_person.id}")
        return self.to_response(new_person)

    async def update_person(
        self,
        person_id: str,
        person_data: UpdatePersonRequest,
        reference_instant: Optional[datetime] = None,
    ) -> PersonResponse:
        """Partially update a person; the occurrence is recomputed when birthday or location changes"""
        person = await self.get_person_by_id(person_id)
        if not person:
            raise ValueError("PERSON_NOT_FOUND")

        changes = person_data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(person, field, value)

        if "birthday" in changes or any(field in changes for field in LOCATION_FIELDS):
            person.next_birthday_utc = to_naive_utc(
                calculate_next_birthday_utc(
                    person.birthday,
                    person.city,
                    person.state,
                    person.country,
                    reference_instant,
                )
            )

        self.db.commit()
        self.db.refresh(person)

        logger.info(f"Updated person: {person.id}")
        return self.to_response(person)

    async def delete_person(self, person_id: str) -> PersonResponse:
        """Delete a person and return the deleted record"""
        person = await self.get_person_by_id(person_id)
        if not person:
            raise ValueError("PERSON_NOT_FOUND")

        response = self.to_response(person)
        self.db.delete(person)
        self.db.commit()

        logger.info(f"Deleted person: {person_id}")
        return response

    # Notification cycle
    async def get_persons_due_for_notification(
        self,
        reference_instant: Optional[datetime] = None,
        buffer_seconds: Optional[int] = None,
    ) -> List[Person]:
        """
        Persons whose occurrence is at or before reference + buffer and who
        have not been notified in the reference year.

        The index only covers the occurrence range; the notified-year
        predicate is applied locally.
        """
        reference = to_utc(reference_instant or utc_now())
        if buffer_seconds is None:
            buffer_seconds = settings.SCAN_BUFFER_SECONDS
        threshold = to_naive_utc(reference + timedelta(seconds=buffer_seconds))
        current_year = get_current_year(reference)

        stmt = (
            select(Person)
            .where(
                and_(
                    Person.reminder_partition == BIRTHDAY_REMINDER_PARTITION,
                    Person.next_birthday_utc <= threshold,
                )
            )
            .order_by(Person.next_birthday_utc.asc())
        )

        try:
            candidates: Sequence[Person] = self.db.scalars(stmt).all()
        except OperationalError as e:
            raise StorageUnavailableError(
                f"Failed to query due persons: {str(e)}"
            ) from e

        return [
            person
            for person in candidates
            if person.last_notification_year < current_year
        ]

    async def mark_notification_sent(
        self, person_id: str, reference_instant: Optional[datetime] = None
    ) -> Person:
        """
        Commit a successful notification: advance the notified year and move
        the occurrence to the next year.

        A person picked up inside the scan buffer (occurrence slightly after
        the reference) is recomputed from the consumed occurrence so it still
        advances to next year. An occurrence already beyond the buffer was
        advanced by an earlier commit and is left as it is.
        """
        reference = to_utc(reference_instant or utc_now())
        current_year = get_current_year(reference)
        buffer_end = reference + timedelta(seconds=settings.SCAN_BUFFER_SECONDS)

        try:
            person = await self.get_person_by_id(person_id)
            if not person:
                raise NotFoundError(
                    f"Person {person_id} not found", error_code="PERSON_NOT_FOUND"
                )

            person.last_notification_year = max(
                person.last_notification_year, current_year
            )

            consumed_occurrence = from_naive_utc(person.next_birthday_utc)
            if consumed_occurrence <= buffer_end:
                person.next_birthday_utc = to_naive_utc(
                    calculate_next_birthday_utc(
                        person.birthday,
                        person.city,
                        person.state,
                        person.country,
                        max(reference, consumed_occurrence),
                    )
                )

            self.db.commit()
            self.db.refresh(person)
        except SQLAlchemyError:
            self.db.rollback()
            raise

        logger.info(
            "Marked birthday notification as sent",
            person_id=person_id,
            notified_year=person.last_notification_year,
            next_birthday_utc=person.next_birthday_utc.isoformat(),
        )
        return person

    # Helpers
    @staticmethod
    def to_response(person: Person) -> PersonResponse:
        return PersonResponse(
            id=person.id,
            first_name=person.first_name,
            last_name=person.last_name,
            birthday=person.birthday,
            city=person.city,
            state=person.state,
            country=person.country,
            timezone=resolve_timezone(person.city, person.state, person.country),
            next_birthday_utc=from_naive_utc(person.next_birthday_utc),
            last_notification_year=person.last_notification_year,
        )


def get_person_service(
    db_session: Session = Depends(get_sync_session),
) -> PersonService:
    """Dependency to get PersonService instance"""
    return PersonService(db_session)
