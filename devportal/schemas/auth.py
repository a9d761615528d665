from pydantic import BaseModel, Field


class UserPrincipal(BaseModel):
    """Authenticated caller, passed explicitly into every service call."""

    user_id: str
    login_id: str | None = None
    email: str | None = None
    name: str | None = None
    roles: list[str] = Field(default_factory=list)
    token: str | None = None
