from fastapi import APIRouter, BackgroundTasks, Depends, status

from orderauth.api.deps import get_engine, require_admin
from orderauth.schemas.invitations import (
    Invitation,
    InvitationCreated,
    InvitationVerifyIn,
    InvitationVerifyOut,
    InviteIn,
    SetupStatusOut,
)
from orderauth.schemas.session import Session
from orderauth.services.email_service import build_invitation_link, send_admin_invitation
from orderauth.services.engine import AuthEngine

router = APIRouter(tags=["invitations"])


def _queue_invitation_email(
    bg: BackgroundTasks, engine: AuthEngine, invitation: InvitationCreated
) -> None:
    base_url = engine.settings.invite_base_url
    if not base_url:
        return
    link = build_invitation_link(base_url, invitation.email, invitation.token)
    bg.add_task(send_admin_invitation, engine.settings, invitation.email, link)


@router.get("/admin/setup", response_model=SetupStatusOut)
async def setup_status(engine: AuthEngine = Depends(get_engine)):
    return SetupStatusOut(complete=await engine.invitations.is_admin_setup_complete())


@router.post(
    "/admin/invitations",
    response_model=InvitationCreated,
    status_code=status.HTTP_201_CREATED,
)
async def create_invitation(
    payload: InviteIn,
    bg: BackgroundTasks,
    engine: AuthEngine = Depends(get_engine),
    _: Session = Depends(require_admin),
):
    invitation = await engine.invitations.create_invitation(payload.email)
    _queue_invitation_email(bg, engine, invitation)
    return invitation


@router.get("/admin/invitations", response_model=list[Invitation])
async def list_invitations(
    engine: AuthEngine = Depends(get_engine),
    _: Session = Depends(require_admin),
):
    return await engine.invitations.list_invitations()


@router.delete("/admin/invitations/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_invitation(
    invitation_id: str,
    engine: AuthEngine = Depends(get_engine),
    _: Session = Depends(require_admin),
) -> None:
    await engine.invitations.revoke_invitation(invitation_id)


@router.post("/admin/invitations/{invitation_id}/resend", response_model=InvitationCreated)
async def resend_invitation(
    invitation_id: str,
    bg: BackgroundTasks,
    engine: AuthEngine = Depends(get_engine),
    _: Session = Depends(require_admin),
):
    invitation = await engine.invitations.resend_invitation(invitation_id)
    _queue_invitation_email(bg, engine, invitation)
    return invitation


@router.post("/invitations/verify", response_model=InvitationVerifyOut)
async def verify_invitation(
    body: InvitationVerifyIn, engine: AuthEngine = Depends(get_engine)
):
    invitation = await engine.invitations.validate_invitation(
        body.email, body.token.get_secret_value()
    )
    return {"email": invitation.email}
