from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from pydantic.alias_generators import to_camel


def now_utc() -> datetime:
    return datetime.now(UTC)


def now_iso() -> str:
    return now_utc().isoformat()


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Permission(WireModel):
    id: str = PydanticField(alias="_id")
    name: str
    description: str | None = None
    resource: str | None = None
    action: str | None = None


class Role(WireModel):
    id: str = PydanticField(alias="_id")
    name: str
    description: str | None = None
    permissions: tuple[Permission, ...] = ()
    created_at: str | None = None
    updated_at: str | None = None


class UserRoleAssignment(WireModel):
    user_id: str
    role_id: str
    assigned_by: str = ""
    assigned_at: str | None = None
    id: str | None = PydanticField(default=None, alias="_id")

    @property
    def pair(self) -> tuple[str, str]:
        return self.user_id, self.role_id


class RoleUser(WireModel):
    id: str = PydanticField(alias="_id")
    full_name: str = ""
    email: str = ""
    staff_id: str | None = None


class RoleCreate(WireModel):
    name: str
    description: str | None = None
    permissions: list[Permission] = PydanticField(default_factory=list)


class RoleUpdate(WireModel):
    name: str | None = None
    description: str | None = None
    permissions: list[Permission] | None = None


class RoleAssignmentRequest(WireModel):
    user_id: str
    role_id: str
    assigned_by: str = ""


class RoleRemovalRequest(WireModel):
    user_id: str
    role_id: str


class IdRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["id"] = "id"
    id: str


class EmbeddedRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["embedded"] = "embedded"
    id: str
    value: dict[str, Any]


Ref = Annotated[IdRef | EmbeddedRef, PydanticField(discriminator="kind")]


class SessionUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    role: str = "user"
    permissions: tuple[str, ...] = ()


class BusyFlag(StrEnum):
    LOADING = "loading"
    CREATING = "creating"
    UPDATING = "updating"
    DELETING = "deleting"
    ASSIGNING = "assigning"


class LoadStatus(StrEnum):
    APPLIED = "applied"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AuthzState:
    permissions: tuple[Permission, ...] = ()
    roles: tuple[Role, ...] = ()
    user_role_assignments: tuple[UserRoleAssignment, ...] = ()
    embedded_roles: dict[str, Role] = field(default_factory=dict)


class PermissionRead(BaseModel):
    id: str
    name: str
    description: str | None = None


class RoleRead(BaseModel):
    id: str
    name: str
    description: str | None = None
    permissions: list[PermissionRead] = PydanticField(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None


class UserRoleRead(BaseModel):
    id: str | None = None
    user_id: str
    role_id: str
    assigned_by: str
    assigned_at: str | None = None


class RoleUserRead(BaseModel):
    id: str
    full_name: str
    email: str
    staff_id: str | None = None


class RoleAssignmentBody(BaseModel):
    user_id: str
    role_id: str


class AccessSummaryRead(BaseModel):
    user_id: str
    is_admin: bool
    roles: list[RoleRead]
    permissions: list[str]


class AccessCheckRead(BaseModel):
    allowed: bool
    candidates: list[str] = PydanticField(default_factory=list)


class RefreshRead(BaseModel):
    status: LoadStatus


class RoleCreateBody(BaseModel):
    name: str
    description: str | None = None
    permissions: list[str] = PydanticField(default_factory=list)


class RoleUpdateBody(BaseModel):
    name: str | None = None
    description: str | None = None
    permissions: list[str] | None = None
