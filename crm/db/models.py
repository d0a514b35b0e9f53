"""
Database Models
===============
Contact = current pipeline stage + data
ContactEvent = immutable stage history (audit log)
FollowupSession / Email hang off a Contact
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def utcnow():
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Company(Base):
    __tablename__ = "companies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Employee(Base):
    __tablename__ = "employees"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=True)

    name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=False, unique=True)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="EMPLOYEE")
    department = Column(String(100), nullable=True)

    # Invitation lifecycle: INVITED → ACTIVE (or DISABLED)
    invitation_status = Column(String(20), nullable=False, default="ACTIVE")
    invitation_token = Column(String(64), nullable=True, unique=True)
    invitation_sent_at = Column(DateTime(timezone=True), nullable=True)
    invited_by = Column(Uuid, ForeignKey("employees.id"), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Contact(Base):
    """
    The Contact table stores the CURRENT pipeline stage.
    History lives in contact_events.
    """
    __tablename__ = "contacts"
    __table_args__ = (UniqueConstraint("company_id", "email", name="uq_contacts_company_email"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False, index=True)
    assigned_employee_id = Column(Uuid, ForeignKey("employees.id"), nullable=True, index=True)

    # Contact data
    name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=False)
    phone = Column(String(50), nullable=True)
    job_title = Column(String(255), nullable=True)
    source = Column(String(100), nullable=True)

    # Pipeline stage - THE SINGLE SOURCE OF TRUTH
    status = Column(String(20), nullable=False, default="LEAD")
    temperature = Column(String(10), nullable=False, default="COLD")
    interest_score = Column(Integer, nullable=False, default=0)
    tracking_token = Column(String(64), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    events = relationship("ContactEvent", back_populates="contact", order_by="ContactEvent.occurred_at")


class ContactEvent(Base):
    """
    The Event Log - IMMUTABLE history.
    Every stage change creates a new row here.
    """
    __tablename__ = "contact_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("contacts.id"), nullable=False, index=True)
    employee_id = Column(Uuid, ForeignKey("employees.id"), nullable=True)

    # What happened?
    from_status = Column(String(20), nullable=False)
    event = Column(String(50), nullable=False)
    to_status = Column(String(20), nullable=False)

    # Extra data (trigger, deal value, tracking token)
    payload = Column(JSON, nullable=True)

    occurred_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    contact = relationship("Contact", back_populates="events")


class FollowupSession(Base):
    """A logged call/email/meeting attempt while a contact is in MQL or SQL"""
    __tablename__ = "sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("contacts.id"), nullable=False, index=True)
    employee_id = Column(Uuid, ForeignKey("employees.id"), nullable=True)

    stage = Column(String(10), nullable=False)
    session_no = Column(Integer, nullable=False)
    rating = Column(Integer, nullable=True)
    session_status = Column(String(20), nullable=False)
    remarks = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Email(Base):
    __tablename__ = "emails"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("contacts.id"), nullable=False, index=True)
    employee_id = Column(Uuid, ForeignKey("employees.id"), nullable=True)

    subject = Column(String(998), nullable=False)
    body = Column(Text, nullable=False)
    tracking_token = Column(String(64), nullable=False, unique=True)
    clicked = Column(Boolean, nullable=False, default=False)
    gmail_message_id = Column(String(255), nullable=True)

    sent_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class MailboxToken(Base):
    """Google OAuth credentials for an employee's connected Gmail mailbox"""
    __tablename__ = "mailbox_tokens"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    employee_id = Column(Uuid, ForeignKey("employees.id"), nullable=False, unique=True)
    credentials_json = Column(Text, nullable=False)
    connected_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Opportunity(Base):
    __tablename__ = "opportunities"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("contacts.id"), nullable=False, index=True)
    employee_id = Column(Uuid, ForeignKey("employees.id"), nullable=True)
    expected_value = Column(Numeric(14, 2), nullable=False)
    status = Column(String(10), nullable=False, default="OPEN")
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Deal(Base):
    __tablename__ = "deals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    opportunity_id = Column(Uuid, ForeignKey("opportunities.id"), nullable=False)
    contact_id = Column(Uuid, ForeignKey("contacts.id"), nullable=False, index=True)
    deal_value = Column(Numeric(14, 2), nullable=False)
    closed_at = Column(DateTime(timezone=True), default=utcnow)
