from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from orderauth.models.records import Administrator, Customer


class Role(StrEnum):
    admin = "admin"
    customer = "customer"


class AdminProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["admin"] = "admin"


class CustomerProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["customer"] = "customer"
    address: str | None = None
    barangay: str | None = None
    town: str | None = None
    province: str | None = None


class Session(BaseModel):
    """Role-tagged identity held for the lifetime of a login.

    The role is carried by ``profile`` and is only ever derived from the
    record table the identity was found in.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    email: str | None = None
    phone: str | None = None
    profile: Annotated[AdminProfile | CustomerProfile, Field(discriminator="kind")]

    @model_validator(mode="after")
    def _require_contact(self) -> Session:
        if not self.email and not self.phone:
            raise ValueError("A session needs an email or a phone number")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def role(self) -> Role:
        return Role(self.profile.kind)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.admin

    @classmethod
    def from_administrator(cls, row: Administrator) -> Session:
        return cls(
            id=row.id,
            display_name=row.name,
            email=row.email,
            phone=row.phone or None,
            profile=AdminProfile(),
        )

    @classmethod
    def from_customer(cls, row: Customer) -> Session:
        return cls(
            id=row.id,
            display_name=row.name,
            email=row.email or None,
            phone=row.phone or None,
            profile=CustomerProfile(
                address=row.address,
                barangay=row.barangay,
                town=row.town,
                province=row.province,
            ),
        )
