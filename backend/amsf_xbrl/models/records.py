"""
Record Models

SQLAlchemy ORM tables for the business records the reporting engine reads
(organizations, settings, clients, beneficial owners, transactions, STR
reports, trainings) and the submission tables it writes.

The CRM screens that maintain business records live outside this package;
these declarations describe only the columns the engine depends on.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from amsf_xbrl.models.constants import (
    DEFAULT_TAXONOMY_VERSION,
    SOURCE_CALCULATED,
    SOURCE_FROM_SETTINGS,
    SOURCE_MANUAL,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all record tables."""


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    rci_number: Mapped[str] = mapped_column(String(64), index=True)

    settings: Mapped[List["Setting"]] = relationship(back_populates="organization", cascade="all, delete-orphan")
    clients: Mapped[List["Client"]] = relationship(back_populates="organization", cascade="all, delete-orphan")
    transactions: Mapped[List["Transaction"]] = relationship(back_populates="organization", cascade="all, delete-orphan")
    str_reports: Mapped[List["StrReport"]] = relationship(back_populates="organization", cascade="all, delete-orphan")
    trainings: Mapped[List["Training"]] = relationship(back_populates="organization", cascade="all, delete-orphan")
    submissions: Mapped[List["Submission"]] = relationship(back_populates="organization", cascade="all, delete-orphan")


class Setting(Base):
    __tablename__ = "settings"
    __table_args__ = (UniqueConstraint("organization_id", "key", name="uq_settings_org_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), index=True)
    key: Mapped[str] = mapped_column(String(128))
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(64), default="entity_info")
    # Target element name; settings without one are never reported
    xbrl_element: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    organization: Mapped[Organization] = relationship(back_populates="settings")


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    client_type: Mapped[str] = mapped_column(String(32), index=True)
    is_pep: Mapped[bool] = mapped_column(Boolean, default=False)
    risk_level: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    nationality: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    incorporation_country: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    organization: Mapped[Organization] = relationship(back_populates="clients")
    beneficial_owners: Mapped[List["BeneficialOwner"]] = relationship(
        back_populates="client", cascade="all, delete-orphan"
    )


class BeneficialOwner(Base):
    __tablename__ = "beneficial_owners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    is_pep: Mapped[bool] = mapped_column(Boolean, default=False)
    nationality: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    ownership_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)

    client: Mapped[Client] = relationship(back_populates="beneficial_owners")


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), index=True)
    client_id: Mapped[Optional[int]] = mapped_column(ForeignKey("clients.id"), nullable=True)
    transaction_date: Mapped[date] = mapped_column(Date, index=True)
    transaction_type: Mapped[str] = mapped_column(String(16))
    transaction_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    cash_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    organization: Mapped[Organization] = relationship(back_populates="transactions")
    client: Mapped[Optional[Client]] = relationship()


class StrReport(Base):
    __tablename__ = "str_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), index=True)
    report_date: Mapped[date] = mapped_column(Date)
    reason: Mapped[str] = mapped_column(String(32), default="OTHER")
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    organization: Mapped[Organization] = relationship(back_populates="str_reports")


class Training(Base):
    __tablename__ = "trainings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), index=True)
    training_date: Mapped[date] = mapped_column(Date)
    staff_count: Mapped[int] = mapped_column(Integer, default=0)

    organization: Mapped[Organization] = relationship(back_populates="trainings")


class Submission(Base):
    __tablename__ = "submissions"
    __table_args__ = (UniqueConstraint("organization_id", "year", name="uq_submissions_org_year"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), index=True)
    year: Mapped[int] = mapped_column(Integer)
    taxonomy_version: Mapped[str] = mapped_column(String(16), default=DEFAULT_TAXONOMY_VERSION)
    status: Mapped[str] = mapped_column(String(16), default="draft")
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), default=utcnow)

    organization: Mapped[Organization] = relationship(back_populates="submissions")
    submission_values: Mapped[List["SubmissionValue"]] = relationship(
        back_populates="submission", cascade="all, delete-orphan", order_by="SubmissionValue.id"
    )

    @property
    def report_date(self) -> date:
        return date(self.year, 12, 31)

    def values_by_element(self) -> Dict[str, "SubmissionValue"]:
        return {sv.element_name: sv for sv in self.submission_values}


class SubmissionValue(Base):
    """
    One stored value per (submission, element name).

    Sources:
    - calculated: derived from business records by the aggregation engine
    - from_settings: copied from an organization setting with a target element
    - manual: answered by a person
    """

    __tablename__ = "submission_values"
    __table_args__ = (UniqueConstraint("submission_id", "element_name", name="uq_submission_values_element"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    submission_id: Mapped[int] = mapped_column(ForeignKey("submissions.id"), index=True)
    element_name: Mapped[str] = mapped_column(String(64))
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(16), default=SOURCE_CALCULATED)
    overridden: Mapped[bool] = mapped_column(Boolean, default=False)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # "metadata" is reserved on declarative classes
    value_metadata: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict)

    submission: Mapped[Submission] = relationship(back_populates="submission_values")

    @property
    def is_calculated(self) -> bool:
        return self.source == SOURCE_CALCULATED

    @property
    def is_from_settings(self) -> bool:
        return self.source == SOURCE_FROM_SETTINGS

    @property
    def is_manual(self) -> bool:
        return self.source == SOURCE_MANUAL

    @property
    def is_confirmed(self) -> bool:
        return self.confirmed_at is not None

    def confirm(self, at: Optional[datetime] = None) -> None:
        if not self.is_confirmed:
            self.confirmed_at = at or utcnow()

    def mark_overridden(self) -> None:
        self.overridden = True

    def update_value(self, new_value: Any) -> None:
        """Human edit path: a changed calculated value becomes an override."""
        new_text = None if new_value is None else str(new_value)
        if self.is_calculated and self.value != new_text:
            self.overridden = True
        self.value = new_text

    @property
    def typed_value(self) -> Any:
        """Best-effort cast of the stored text; falls back to the raw string."""
        if self.value is None or self.value.strip() == "":
            return None
        text = self.value.strip()
        if text.isdigit():
            return int(text)
        lowered = text.lower()
        if lowered in ("true", "yes", "oui"):
            return True
        if lowered in ("false", "no", "non"):
            return False
        try:
            return Decimal(text)
        except InvalidOperation:
            pass
        try:
            return date.fromisoformat(text)
        except ValueError:
            return self.value
