"""Directory (user/role) enums."""

from enum import Enum


class Role(str, Enum):
    """
    Practice staff roles.

    - THERAPIST: Clinician with an assigned caseload
    - SUPERVISOR: Clinical supervisor of one or more therapists
    - ADMINISTRATOR: Front office / practice administration
    - ADMIN: Platform admin (trigger and template management)
    """

    THERAPIST = "therapist"
    SUPERVISOR = "supervisor"
    ADMINISTRATOR = "administrator"
    ADMIN = "admin"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


# Roles allowed to manage triggers/templates and read compliance reports
ROLES_CAN_MANAGE_NOTIFICATIONS = frozenset({Role.ADMIN, Role.SUPERVISOR})
