"""
Request Models
==============
Bodies accepted by the API. Field names follow the frontend's camelCase;
snake_case is accepted too.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ── Auth / employees ──────────────────────────────────────────────────────────

class GoogleLoginRequest(_Body):
    token: str
    invite_token: Optional[str] = Field(default=None, alias="inviteToken")
    is_admin_registration: bool = Field(default=False, alias="isAdminRegistration")


class CompanyCreateRequest(_Body):
    name: str = Field(min_length=1, max_length=255)


class InviteRequest(_Body):
    name: str = Field(min_length=1, max_length=255)
    email: str
    role: str = "EMPLOYEE"
    department: Optional[str] = None


class EmployeeProfileUpdate(_Body):
    """Fields an employee may change on their own profile"""
    name: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = None
    department: Optional[str] = None


class EmployeeStatusUpdate(_Body):
    status: str


# ── Contacts ──────────────────────────────────────────────────────────────────

class ContactCreateRequest(_Body):
    name: str = Field(min_length=1, max_length=255)
    email: str
    phone: Optional[str] = None
    job_title: Optional[str] = Field(default=None, alias="jobTitle")
    temperature: str = "COLD"
    source: Optional[str] = None


class ContactUpdate(_Body):
    """Partial update; only fields present in the request are written"""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    job_title: Optional[str] = Field(default=None, alias="jobTitle")
    temperature: Optional[str] = None


class PromoteRequest(_Body):
    target_status: str = Field(alias="targetStatus")
    # Validated by the pipeline so bad input maps to MissingValue
    value: Optional[Union[float, str]] = None


# ── Sessions ──────────────────────────────────────────────────────────────────

class SessionCreateRequest(_Body):
    contact_id: str = Field(alias="contactId")
    stage: str
    session_no: int = Field(alias="sessionNo")
    rating: Optional[int] = None
    session_status: str = Field(alias="sessionStatus")
    remarks: Optional[str] = None


class SessionUpdate(_Body):
    """Partial update of a follow-up session"""
    rating: Optional[int] = None
    session_status: Optional[str] = Field(default=None, alias="sessionStatus")
    remarks: Optional[str] = None


# ── Emails ────────────────────────────────────────────────────────────────────

class EmailSendRequest(_Body):
    contact_id: str = Field(alias="contactId")
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)
    cc: Optional[str] = None
    bcc: Optional[str] = None
    recipient_email: Optional[str] = Field(default=None, alias="recipientEmail")
