"""Centralized defaults for enums."""

from app.db.enums.conversations import DisclosureState, GateState
from app.db.enums.jobs import JobStatus
from app.db.enums.mediation import MediationKind, MediationStatus


DEFAULT_JOB_STATUS: JobStatus = JobStatus.PENDING
DEFAULT_GATE_STATE: GateState = GateState.OPEN
DEFAULT_DISCLOSURE_STATE: DisclosureState = DisclosureState.LOCKED

# Where each kind of request starts its life
INITIAL_STATUS_BY_KIND: dict[MediationKind, MediationStatus] = {
    MediationKind.PRODUCT_INTEREST: MediationStatus.SUBMITTED,
    MediationKind.COMMUNICATION: MediationStatus.SUBMITTED,
    MediationKind.CALL: MediationStatus.PENDING,
}
