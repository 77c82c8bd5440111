from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

ADMIN_ROLES = frozenset({"ADMIN", "SUPER_ADMIN"})


class AuthUser(BaseModel):
    """
    Represents an authenticated user decoded from the session JWT.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "CUSTOMER"
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role.upper() in ADMIN_ROLES

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or (self.email or self.user_id)
