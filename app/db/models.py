from typing import Optional
from datetime import datetime
from sqlalchemy import (
    String,
    Integer,
    Index,
    func,
    CheckConstraint,
    DateTime,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import uuid


class Base(DeclarativeBase):
    pass


# Partition key of the occurrence index; every person shares it so the
# scanner can range-query over next_birthday_utc
BIRTHDAY_REMINDER_PARTITION = "BIRTHDAY_REMINDER"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.current_timestamp(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.current_timestamp(),
        onupdate=func.current_timestamp(),
    )


# Models
class Person(Base, AuditMixin):
    __tablename__ = "persons"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    # YYYY-MM-DD; only month and day drive scheduling
    birthday: Mapped[str] = mapped_column(String(10), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[str] = mapped_column(String(100), nullable=False)

    reminder_partition: Mapped[str] = mapped_column(
        String(32), default=BIRTHDAY_REMINDER_PARTITION, nullable=False
    )
    # Naive UTC
    next_birthday_utc: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_notification_year: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )

    __table_args__ = (
        Index(
            "ix_persons_next_birthday",
            "reminder_partition",
            "next_birthday_utc",
        ),
        CheckConstraint(
            "last_notification_year >= 0", name="ck_persons_last_notification_year"
        ),
    )

    def __repr__(self) -> str:
        return f"<Person {self.id} next={self.next_birthday_utc} last={self.last_notification_year}>"
