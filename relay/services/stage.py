from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from relay.services.conversation_store import ConversationState

SECONDS_PER_DAY = 86400
AT_RISK_AFTER_DAYS = 14
ESTABLISHED_AFTER_DAYS = 30


class Stage(str, Enum):
    NEW = "new"
    RETURNING = "returning"
    AT_RISK = "at_risk"
    ESTABLISHED = "established"
    UNKNOWN = "unknown"
    ERROR = "error"

    @classmethod
    def parse(cls, value: object) -> Optional["Stage"]:
        """Map a backend-reported stage string to a Stage; None when empty."""
        if isinstance(value, Stage):
            return value
        if value is None:
            return None
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        if not key:
            return None
        try:
            return cls(key)
        except ValueError:
            return cls.UNKNOWN


def days_since(start: datetime, now: datetime) -> float:
    return (now - start).total_seconds() / SECONDS_PER_DAY


def classify(state: "ConversationState", now: datetime) -> Stage:
    """Relationship stage for a sender.

    Rules run in a fixed order and a later match overrides an earlier one, so a
    sender past both thresholds ends up established rather than at_risk.
    """
    days_since_first = days_since(state.first_contact_at, now)
    days_since_last = days_since(state.last_activity_at, now)

    stage = state.stage
    if stage == Stage.NEW and len(state.history) > 1:
        stage = Stage.RETURNING
    if days_since_last > AT_RISK_AFTER_DAYS:
        stage = Stage.AT_RISK
    if days_since_first > ESTABLISHED_AFTER_DAYS:
        stage = Stage.ESTABLISHED
    return stage
