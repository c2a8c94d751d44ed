"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Generator
from uuid import UUID

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.security import decode_session_token
from app.db.session import SessionLocal


# Cookie and header names
COOKIE_NAME = "dealbridge_session"
BEARER_PREFIX = "Bearer "


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_request_token(request: Request) -> str | None:
    """Session token from the Authorization header, else the session cookie."""
    header = request.headers.get("Authorization", "")
    if header.startswith(BEARER_PREFIX):
        return header[len(BEARER_PREFIX):].strip() or None
    return request.cookies.get(COOKIE_NAME)


def session_from_token(db: Session, token: str | None):
    """
    Resolve a session token to an ActorSession.

    Validates:
    - Token exists
    - JWT is valid and not expired
    - Account exists and is active
    - Token version matches (for revocation support)
    - Role is a known enum value

    Shared by HTTP dependencies and the websocket endpoint.

    Raises:
        HTTPException 401: Authentication failed
        HTTPException 403: Unknown role
    """
    # Import here to avoid circular imports
    from app.db.enums import Role, capabilities_for
    from app.db.models import Account
    from app.schemas.auth import ActorSession

    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_session_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid session")

    try:
        account_id = UUID(str(payload["sub"]))
    except (KeyError, ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid session")

    account = db.query(Account).filter(Account.id == account_id).first()
    if not account:
        raise HTTPException(status_code=401, detail="Account not found")

    if not account.is_active:
        raise HTTPException(status_code=401, detail="Account disabled")

    # Token version check (revocation support)
    if account.token_version != payload.get("token_version"):
        raise HTTPException(status_code=401, detail="Session revoked")

    # Validate role is a known enum value - return 403 not 500
    if not Role.has_value(account.role):
        raise HTTPException(
            status_code=403,
            detail=f"Unknown role '{account.role}'. Contact administrator.",
        )

    role = Role(account.role)
    return ActorSession(
        account_id=account.id,
        role=role,
        capabilities=capabilities_for(role),
    )


def get_current_session(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Get the authenticated actor: account id, role and capabilities.

    This is the PRIMARY auth dependency for every endpoint.
    """
    return session_from_token(db, get_request_token(request))


def require_roles(allowed_roles):
    """
    Dependency factory for role-based authorization.

    Uses enum values (not strings) to prevent drift.

    Usage:
        @router.get("/review", dependencies=[Depends(require_roles(ROLES_CAN_REVIEW))])
    """
    def dependency(request: Request, db: Session = Depends(get_db)):
        session = get_current_session(request, db)
        if session.role not in allowed_roles:
            raise HTTPException(
                status_code=403,
                detail=f"Role '{session.role.value}' not authorized for this action",
            )
        return session
    return dependency

