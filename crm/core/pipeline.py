"""
Contact Pipeline
================
Stage promotions for contacts, persisted to the database.
Every promotion writes a ContactEvent row next to the status change.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.contact_states import (
    ContactStatus,
    PipelineEvent,
    TERMINAL_STATES,
    Trigger,
    VALUE_REQUIRED,
    parse_enum,
    successors,
)
from crm.core.errors import ContactNotFound, InvalidTransition, MissingValue, ValidationError
from crm.db.models import Contact, ContactEvent as EventModel, Deal, Opportunity

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
MIN_DEAL_VALUE = CENT
MAX_DEAL_VALUE = Decimal("999999999999.99")


def coerce_value(raw) -> Decimal:
    """Parse a monetary value into cents, rejecting anything that isn't a positive amount"""
    if raw is None or isinstance(raw, bool) or (isinstance(raw, str) and not raw.strip()):
        raise MissingValue("A deal value is required for this stage")
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        raise MissingValue(f"Deal value must be a number, got {raw!r}")
    if not value.is_finite():
        raise MissingValue("Deal value must be a finite number")
    if value > MAX_DEAL_VALUE:
        raise MissingValue(f"Deal value must not exceed {MAX_DEAL_VALUE}")

    # Stored as Numeric(14, 2)
    value = value.quantize(CENT, rounding=ROUND_HALF_UP)
    if value < MIN_DEAL_VALUE:
        raise MissingValue(f"Deal value must be at least {MIN_DEAL_VALUE}")
    return value


class ContactPipeline:
    """
    Moves contacts through LEAD → MQL → SQL → OPPORTUNITY → CUSTOMER → EVANGELIST/DORMANT.
    One stage at a time, never backwards.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def promote(
        self,
        contact_id,
        target,
        value=None,
        employee_id=None,
        company_id=None,
        trigger: Trigger = Trigger.MANUAL,
        payload: dict = None,
    ) -> ContactStatus:
        target_status = parse_enum(ContactStatus, target)
        if target_status is None:
            raise ValidationError(f"Unknown pipeline stage: {target}")

        # 1. Load current contact (with row lock to prevent race conditions)
        query = select(Contact).where(Contact.id == contact_id).with_for_update()
        if company_id is not None:
            query = query.where(Contact.company_id == company_id)
        result = await self.session.execute(query)
        contact = result.scalar_one_or_none()

        if not contact:
            raise ContactNotFound()

        current_status = ContactStatus(contact.status)

        # 2. Block terminal states
        if current_status in TERMINAL_STATES:
            raise InvalidTransition(
                f"Contact is in terminal stage {current_status.value}. "
                f"Cannot move to {target_status.value}."
            )

        # 3. Only the immediate successor is allowed
        if target_status not in successors(current_status):
            raise InvalidTransition(
                f"Illegal transition: {current_status.value} → {target_status.value}"
            )

        # 4. Money-bearing stages need a value
        amount = None
        if target_status in VALUE_REQUIRED:
            amount = coerce_value(value)
            await self._record_value(contact, target_status, amount, employee_id)

        # 5. Append to the event log
        event_payload = dict(payload or {})
        event_payload["trigger"] = Trigger(trigger).value
        if amount is not None:
            event_payload["value"] = str(amount)

        now = datetime.now(timezone.utc)
        self.session.add(EventModel(
            id=uuid.uuid4(),
            contact_id=contact.id,
            employee_id=employee_id,
            from_status=current_status.value,
            event=PipelineEvent.PROMOTED.value,
            to_status=target_status.value,
            payload=event_payload,
            occurred_at=now,
        ))

        # 6. Update contact's current stage
        contact.status = target_status.value
        contact.updated_at = now

        await self.session.commit()

        logger.info(
            "Contact %s: %s → %s (%s)",
            str(contact.id)[:8], current_status.value, target_status.value, event_payload["trigger"],
        )
        return target_status

    async def _record_value(self, contact: Contact, target: ContactStatus, amount: Decimal, employee_id):
        """OPPORTUNITY opens an opportunity; CUSTOMER closes it as a deal"""
        if target == ContactStatus.OPPORTUNITY:
            self.session.add(Opportunity(
                id=uuid.uuid4(),
                contact_id=contact.id,
                employee_id=employee_id,
                expected_value=amount,
                status="OPEN",
            ))
            return

        result = await self.session.execute(
            select(Opportunity)
            .where(Opportunity.contact_id == contact.id, Opportunity.status == "OPEN")
            .order_by(Opportunity.created_at.desc())
            .limit(1)
        )
        opportunity = result.scalar_one_or_none()
        if opportunity is None:
            opportunity = Opportunity(
                id=uuid.uuid4(),
                contact_id=contact.id,
                employee_id=employee_id,
                expected_value=amount,
            )
            self.session.add(opportunity)
        opportunity.status = "WON"

        self.session.add(Deal(
            id=uuid.uuid4(),
            opportunity_id=opportunity.id,
            contact_id=contact.id,
            deal_value=amount,
        ))
