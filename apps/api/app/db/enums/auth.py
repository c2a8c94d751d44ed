"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    Account roles as supplied by the identity provider.

    - FOUNDER / INVESTOR / MENTOR: parties to a mediated introduction
    - ADMIN: staff reviewer (request review, channel re-approval)
    - SUPERADMIN: staff oversight (everything an admin can do)
    """

    FOUNDER = "founder"
    INVESTOR = "investor"
    MENTOR = "mentor"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


class Capability(str, Enum):
    """Capabilities derived from a role; checked by guards instead of raw roles."""

    ADMIN = "admin"
    SUPERADMIN = "superadmin"
