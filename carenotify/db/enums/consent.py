"""Consent enums."""

from enum import Enum


class ConsentCategory(str, Enum):
    """Data-processing purposes tracked independently per client."""

    AI_PROCESSING = "ai_processing"
    DATA_SHARING = "data_sharing"
    RESEARCH_ANALYTICS = "research_analytics"
    MARKETING_COMMUNICATIONS = "marketing_communications"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class ConsentDecision(str, Enum):
    """Consent gate outcome. DENIED is the only default anywhere it is stored."""

    DENIED = "denied"
    GRANTED = "granted"


class ConsentDenialReason(str, Enum):
    NO_RECORD = "no_consent_record"
    WITHDRAWN = "consent_withdrawn"
    AMBIGUOUS = "ambiguous_consent_state"
    UNREADABLE = "consent_state_unreadable"
    UNKNOWN_CATEGORY = "unknown_consent_category"


# Current consent terms version (bump when consent text changes)
CURRENT_CONSENT_VERSION = "1.0.0"
