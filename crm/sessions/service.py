"""
Follow-up Sessions
==================
Logs call/email/meeting attempts made while a contact sits in MQL or SQL.
At most MAX_SESSIONS_PER_STAGE per (contact, stage); logging a session never
moves the contact, promotion is a separate action.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crm.contacts.service import as_uuid, load_contact
from crm.core.contact_states import (
    MAX_RATING,
    MAX_SESSIONS_PER_STAGE,
    MIN_RATING,
    SessionStage,
    SessionStatus,
    parse_enum,
)
from crm.core.errors import SessionLimitExceeded, SessionNotFound, StateConflictError, ValidationError
from crm.db.models import Contact, FollowupSession
from crm.schemas import SessionUpdate

logger = logging.getLogger(__name__)


def _check_stage(stage) -> SessionStage:
    parsed = parse_enum(SessionStage, stage)
    if parsed is None:
        raise ValidationError("Stage must be MQL or SQL", code="INVALID_STAGE")
    return parsed


def _check_status(session_status) -> SessionStatus:
    parsed = parse_enum(SessionStatus, session_status)
    if parsed is None:
        raise ValidationError(
            "Session status must be CONNECTED, NOT_CONNECTED or BAD_TIMING",
            code="INVALID_SESSION_STATUS",
        )
    return parsed


def _check_rating(rating) -> None:
    if rating is None:
        return
    if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(
            f"Rating must be between {MIN_RATING} and {MAX_RATING}",
            code="INVALID_RATING",
        )


def session_to_dict(s: FollowupSession) -> dict:
    return {
        "id": str(s.id),
        "contact_id": str(s.contact_id),
        "employee_id": str(s.employee_id) if s.employee_id else None,
        "stage": s.stage,
        "session_no": s.session_no,
        "rating": s.rating,
        "session_status": s.session_status,
        "remarks": s.remarks,
        "created_at": s.created_at.isoformat() if s.created_at else None,
    }


async def count_by_stage(db: AsyncSession, contact_id, stage: SessionStage) -> int:
    result = await db.execute(
        select(func.count(FollowupSession.id)).where(
            FollowupSession.contact_id == contact_id,
            FollowupSession.stage == stage.value,
        )
    )
    return result.scalar_one()


async def create_session(
    db: AsyncSession,
    contact_id,
    employee_id,
    company_id,
    stage,
    session_no: int,
    session_status,
    rating: Optional[int] = None,
    remarks: Optional[str] = None,
) -> FollowupSession:
    stage = _check_stage(stage)
    status = _check_status(session_status)
    _check_rating(rating)
    if isinstance(session_no, bool) or not isinstance(session_no, int) or session_no < 1:
        raise ValidationError("sessionNo must be a positive integer")

    # Lock the contact row so concurrent creations can't both pass the cap
    contact = await load_contact(db, contact_id, company_id, for_update=True)

    if contact.status != stage.value:
        raise StateConflictError(
            f"Contact is not in {stage.value} stage",
            code="STAGE_MISMATCH",
        )

    count = await count_by_stage(db, contact.id, stage)
    if count >= MAX_SESSIONS_PER_STAGE:
        raise SessionLimitExceeded(f"Maximum {stage.value} sessions reached")

    session = FollowupSession(
        id=uuid.uuid4(),
        contact_id=contact.id,
        employee_id=employee_id,
        stage=stage.value,
        session_no=session_no,
        rating=rating,
        session_status=status.value,
        remarks=remarks or None,
    )
    db.add(session)
    await db.commit()

    logger.info(
        "Session %d/%d logged for contact %s at %s",
        count + 1, MAX_SESSIONS_PER_STAGE, str(contact.id)[:8], stage.value,
    )
    return session


async def list_sessions(db: AsyncSession, contact_id, company_id) -> list:
    contact = await load_contact(db, contact_id, company_id)

    result = await db.execute(
        select(FollowupSession)
        .where(FollowupSession.contact_id == contact.id)
        .order_by(FollowupSession.created_at, FollowupSession.session_no)
    )
    return list(result.scalars().all())


async def list_sessions_by_stage(db: AsyncSession, contact_id, company_id, stage) -> list:
    stage = _check_stage(stage)
    contact = await load_contact(db, contact_id, company_id)

    result = await db.execute(
        select(FollowupSession)
        .where(FollowupSession.contact_id == contact.id, FollowupSession.stage == stage.value)
        .order_by(FollowupSession.created_at, FollowupSession.session_no)
    )
    return list(result.scalars().all())


async def _load_session(db: AsyncSession, session_id, company_id) -> FollowupSession:
    sid = as_uuid(session_id)
    if sid is None:
        raise SessionNotFound()

    result = await db.execute(
        select(FollowupSession)
        .join(Contact, Contact.id == FollowupSession.contact_id)
        .where(FollowupSession.id == sid, Contact.company_id == company_id)
    )
    session = result.scalar_one_or_none()
    if not session:
        raise SessionNotFound()
    return session


async def update_session(db: AsyncSession, session_id, company_id, updates: SessionUpdate) -> FollowupSession:
    """Apply a partial update; only rating, session_status and remarks can change"""
    session = await _load_session(db, session_id, company_id)

    fields = updates.model_dump(exclude_unset=True)
    values = {}

    # An explicit null clears the rating
    if "rating" in fields:
        _check_rating(fields["rating"])
        values["rating"] = fields["rating"]

    if fields.get("session_status") is not None:
        values["session_status"] = _check_status(fields["session_status"]).value

    if "remarks" in fields:
        values["remarks"] = fields["remarks"]

    if not values:
        return session

    await db.execute(
        update(FollowupSession).where(FollowupSession.id == session.id).values(**values)
    )
    await db.commit()
    await db.refresh(session)
    return session


async def delete_session(db: AsyncSession, session_id, company_id) -> None:
    session = await _load_session(db, session_id, company_id)
    await db.execute(delete(FollowupSession).where(FollowupSession.id == session.id))
    await db.commit()


async def average_rating(db: AsyncSession, contact_id, stage) -> float:
    """Mean of the non-null ratings for one stage, 0 when nothing is rated"""
    stage = _check_stage(stage)
    result = await db.execute(
        select(func.avg(FollowupSession.rating)).where(
            FollowupSession.contact_id == as_uuid(contact_id),
            FollowupSession.stage == stage.value,
            FollowupSession.rating.isnot(None),
        )
    )
    avg = result.scalar_one_or_none()
    return round(float(avg), 2) if avg is not None else 0.0
