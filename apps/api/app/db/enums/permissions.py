"""Role permission helper sets."""

from app.db.enums.auth import Capability, Role

# Roles that hold the admin capability (request review, channel re-approval)
ROLES_CAN_REVIEW = {Role.ADMIN, Role.SUPERADMIN}

# Roles that can list every request regardless of status
ROLES_CAN_OVERSEE = {Role.SUPERADMIN}

# Roles that may open mediation requests
ROLES_CAN_REQUEST = {Role.FOUNDER, Role.INVESTOR, Role.MENTOR}


def capabilities_for(role: Role) -> frozenset[Capability]:
    """Capabilities granted by a role."""
    if role == Role.SUPERADMIN:
        return frozenset({Capability.ADMIN, Capability.SUPERADMIN})
    if role == Role.ADMIN:
        return frozenset({Capability.ADMIN})
    return frozenset()
