from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, EmailStr, SecretStr


class InvitationStatus(StrEnum):
    pending = "pending"
    used = "used"
    expired = "expired"


class InviteIn(BaseModel):
    email: EmailStr


class Invitation(BaseModel):
    id: str
    email: EmailStr
    created_by: str
    created_at: datetime
    expires_at: datetime
    used: bool
    status: InvitationStatus


class InvitationCreated(Invitation):
    token: str


class InvitationVerifyIn(BaseModel):
    email: EmailStr
    token: SecretStr


class InvitationVerifyOut(BaseModel):
    email: EmailStr


class SetupStatusOut(BaseModel):
    complete: bool
