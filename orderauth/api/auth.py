from fastapi import APIRouter, Depends, Response, status

from orderauth.api.deps import get_engine
from orderauth.schemas.auth import (
    AdminRegistrationIn,
    CodePasteIn,
    CodeRequestIn,
    CodeVerifyIn,
    CustomerRegistrationIn,
    LinkCallbackIn,
    LinkOutcome,
    PasswordForgotIn,
    PasswordLoginIn,
    PasswordResetIn,
    ResendStatusOut,
)
from orderauth.schemas.session import Session
from orderauth.services.engine import AuthEngine

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=Session)
async def login(payload: PasswordLoginIn, engine: AuthEngine = Depends(get_engine)):
    return await engine.credentials.login_with_password(
        payload.email, payload.password.get_secret_value(), role=payload.role
    )


@router.post("/otp/request", response_model=ResendStatusOut)
async def request_code(payload: CodeRequestIn, engine: AuthEngine = Depends(get_engine)):
    await engine.credentials.request_code(payload.contact)
    can_resend, remaining = engine.credentials.resend_status(payload.contact)
    return ResendStatusOut(can_resend=can_resend, seconds_remaining=remaining)


@router.get("/otp/status", response_model=ResendStatusOut)
def resend_status(contact: str, engine: AuthEngine = Depends(get_engine)):
    can_resend, remaining = engine.credentials.resend_status(contact)
    return ResendStatusOut(can_resend=can_resend, seconds_remaining=remaining)


@router.post("/otp/verify", response_model=Session)
async def verify_code(payload: CodeVerifyIn, engine: AuthEngine = Depends(get_engine)):
    return await engine.credentials.verify_code(
        payload.contact, payload.code, role=payload.role
    )


@router.post(
    "/otp/paste",
    response_model=Session,
    responses={204: {"description": "No complete code yet, or already submitted"}},
)
async def paste_code(payload: CodePasteIn, engine: AuthEngine = Depends(get_engine)):
    session = await engine.credentials.submit_input(payload.contact, payload.text)
    if session is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return session


@router.post("/callback", response_model=LinkOutcome)
async def link_callback(payload: LinkCallbackIn, engine: AuthEngine = Depends(get_engine)):
    return await engine.credentials.complete_link(payload.url)


@router.post("/password/forgot")
async def forgot_password(
    payload: PasswordForgotIn, engine: AuthEngine = Depends(get_engine)
):
    await engine.credentials.request_password_reset(payload.email)
    return {"message": "If the email address is valid, instructions will be sent."}


@router.post("/password/reset")
async def reset_password(payload: PasswordResetIn, engine: AuthEngine = Depends(get_engine)):
    await engine.credentials.complete_password_reset(payload.password.get_secret_value())
    return {"message": "Password updated. Please sign in again."}


@router.post("/register/customer", status_code=status.HTTP_202_ACCEPTED)
async def register_customer(
    payload: CustomerRegistrationIn, engine: AuthEngine = Depends(get_engine)
):
    await engine.credentials.register_customer(payload)
    return {"message": "Check your email for the verification code."}


@router.delete("/register/customer", status_code=status.HTTP_204_NO_CONTENT)
async def abandon_registration(engine: AuthEngine = Depends(get_engine)) -> None:
    await engine.credentials.abandon_registration()


@router.post(
    "/register/admin", response_model=Session, status_code=status.HTTP_201_CREATED
)
async def register_admin(
    payload: AdminRegistrationIn, engine: AuthEngine = Depends(get_engine)
):
    token = payload.token.get_secret_value() if payload.token else None
    return await engine.invitations.register_admin(
        payload.email,
        payload.password.get_secret_value(),
        payload.name,
        payload.phone,
        token=token,
    )


@router.get("/session", response_model=Session | None)
async def current_session(engine: AuthEngine = Depends(get_engine)):
    return await engine.sessions.get_session()


@router.post("/logout")
async def logout(engine: AuthEngine = Depends(get_engine)):
    await engine.logout()
    return {"message": "ok"}
