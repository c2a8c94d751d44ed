"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from app.db.enums import Capability, Role


class TokenPayload(BaseModel):
    """Decoded JWT payload structure."""
    sub: UUID  # account_id
    role: str
    token_version: int


class ActorSession(BaseModel):
    """
    Authenticated actor for a request or socket connection.

    This is returned by get_current_session and carries what the
    authorization guards need: the account, its role and the
    capabilities derived from it.
    """
    account_id: UUID
    role: Role  # Validated enum
    capabilities: frozenset[Capability] = frozenset()

    @property
    def is_admin(self) -> bool:
        return Capability.ADMIN in self.capabilities

    @property
    def is_superadmin(self) -> bool:
        return Capability.SUPERADMIN in self.capabilities


class MeResponse(BaseModel):
    """Response schema for GET /auth/me endpoint."""
    account_id: UUID
    role: Role
    alias: str
    alias_label: str
    capabilities: list[Capability]
