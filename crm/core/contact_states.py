"""
Contact Lifecycle States
Every contact is in exactly ONE pipeline stage at any time
"""

from enum import Enum


class ContactStatus(str, Enum):
    # Funnel
    LEAD = "LEAD"                  # Just added, welcome email sent
    MQL = "MQL"                    # Marketing qualified (clicked / nurtured)
    SQL = "SQL"                    # Sales qualified
    OPPORTUNITY = "OPPORTUNITY"    # Expected deal value recorded
    CUSTOMER = "CUSTOMER"          # Deal closed

    # After the sale
    EVANGELIST = "EVANGELIST"      # Brand advocate (terminal)
    DORMANT = "DORMANT"            # Gone quiet (terminal)


class Temperature(str, Enum):
    HOT = "HOT"
    WARM = "WARM"
    COLD = "COLD"


class SessionStage(str, Enum):
    MQL = "MQL"
    SQL = "SQL"


class SessionStatus(str, Enum):
    CONNECTED = "CONNECTED"
    NOT_CONNECTED = "NOT_CONNECTED"
    BAD_TIMING = "BAD_TIMING"


class PipelineEvent(str, Enum):
    CONTACT_CREATED = "CONTACT_CREATED"
    PROMOTED = "PROMOTED"


class Trigger(str, Enum):
    MANUAL = "MANUAL"
    EMAIL_CLICK = "EMAIL_CLICK"


# Terminal states - once a contact reaches these, it stops moving
TERMINAL_STATES = {
    ContactStatus.EVANGELIST,
    ContactStatus.DORMANT,
}

# current stage → stages it may be promoted to
TRANSITIONS = {
    ContactStatus.LEAD: (ContactStatus.MQL,),
    ContactStatus.MQL: (ContactStatus.SQL,),
    ContactStatus.SQL: (ContactStatus.OPPORTUNITY,),
    ContactStatus.OPPORTUNITY: (ContactStatus.CUSTOMER,),
    ContactStatus.CUSTOMER: (ContactStatus.EVANGELIST, ContactStatus.DORMANT),
}

# Promotions into these stages must carry a monetary value
VALUE_REQUIRED = {
    ContactStatus.OPPORTUNITY,
    ContactStatus.CUSTOMER,
}

MAX_SESSIONS_PER_STAGE = 5
MIN_RATING = 1
MAX_RATING = 10


def successors(status: ContactStatus) -> tuple:
    """Stages directly reachable from `status`"""
    return TRANSITIONS.get(status, ())


def parse_enum(enum_cls, value):
    """Return the enum member for `value`, or None when it isn't one"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None
