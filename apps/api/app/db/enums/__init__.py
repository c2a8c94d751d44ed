"""Enum definitions for application constants."""

from app.db.enums.auth import Capability, Role
from app.db.enums.conversations import (
    ADMIN_ROOM_EVENTS,
    ChannelEventType,
    DisclosureBasis,
    DisclosureState,
    GateState,
)
from app.db.enums.defaults import (
    DEFAULT_DISCLOSURE_STATE,
    DEFAULT_GATE_STATE,
    DEFAULT_JOB_STATUS,
    INITIAL_STATUS_BY_KIND,
)
from app.db.enums.jobs import JobStatus, JobType
from app.db.enums.mediation import (
    REVIEWING_STATUSES,
    TERMINAL_STATUSES,
    CommunicationType,
    MediationAction,
    MediationKind,
    MediationStatus,
)
from app.db.enums.permissions import (
    ROLES_CAN_OVERSEE,
    ROLES_CAN_REQUEST,
    ROLES_CAN_REVIEW,
    capabilities_for,
)
