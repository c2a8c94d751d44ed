"""Authentication endpoints.

Sign-in happens at the identity provider; this service only reads the
session it issues.
"""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from app.core.deps import COOKIE_NAME, get_current_session, get_db
from app.schemas.auth import ActorSession, MeResponse
from app.services import alias_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me")
def get_me(
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> MeResponse:
    """
    Get the current account's role, alias and capabilities.

    Binds the alias on first call. Used by the frontend to bootstrap auth
    state on page load.
    """
    binding = alias_service.ensure_alias_for(db, session.account_id)
    return MeResponse(
        account_id=session.account_id,
        role=session.role,
        alias=binding.code,
        alias_label=binding.label,
        capabilities=sorted(session.capabilities, key=lambda c: c.value),
    )


@router.post("/logout")
def logout(response: Response):
    """Clear session cookie."""
    response.delete_cookie(COOKIE_NAME, path="/")
    return {"status": "logged_out"}
