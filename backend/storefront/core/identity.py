import enum
from dataclasses import dataclass
from uuid import UUID


class Role(str, enum.Enum):
    customer = "customer"
    vendor = "vendor"
    admin = "admin"


@dataclass(frozen=True)
class Actor:
    """Caller identity as asserted by the upstream auth layer."""

    user_id: UUID
    role: Role = Role.customer

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin

    @property
    def is_vendor(self) -> bool:
        return self.role == Role.vendor
