from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, SecretStr, field_validator

from orderauth.schemas.session import Role, Session


class PasswordLoginIn(BaseModel):
    email: EmailStr
    password: SecretStr
    role: Role = Role.customer


class CodeRequestIn(BaseModel):
    contact: str = Field(min_length=3)


class CodeVerifyIn(BaseModel):
    contact: str = Field(min_length=3)
    code: str
    role: Role | None = None


class CodePasteIn(BaseModel):
    contact: str = Field(min_length=3)
    text: str


class ResendStatusOut(BaseModel):
    can_resend: bool
    seconds_remaining: int


class LinkCallbackIn(BaseModel):
    url: str


class LinkOutcome(BaseModel):
    kind: Literal["signed_in", "recovery"]
    session: Session | None = None


class PasswordForgotIn(BaseModel):
    email: EmailStr


class PasswordResetIn(BaseModel):
    password: SecretStr


class CustomerRegistrationIn(BaseModel):
    email: EmailStr
    password: SecretStr
    name: str = Field(min_length=1)
    phone: str | None = None
    address: str | None = None
    barangay: str | None = None
    town: str | None = None
    province: str | None = None
    contact_person: str | None = None
    contact_number: str | None = None


class AdminRegistrationIn(BaseModel):
    email: EmailStr
    password: SecretStr
    name: str = Field(min_length=1)
    phone: str | None = None
    token: SecretStr | None = None


class ProfileUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    phone: str | None = None
    address: str | None = None
    barangay: str | None = None
    town: str | None = None
    province: str | None = None
    contact_person: str | None = None
    contact_number: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str | None) -> str:
        if value is None:
            raise ValueError("Name cannot be cleared")
        return value


class CustomerOut(BaseModel):
    id: str
    name: str
    email: str | None
    phone: str | None
    address: str | None
    barangay: str | None
    town: str | None
    province: str | None
    contact_person: str | None
    contact_number: str | None

    model_config = ConfigDict(
        from_attributes=True,
    )
