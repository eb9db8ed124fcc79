from pydantic import BaseModel


class LoginIn(BaseModel):
    username: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MembershipOut(BaseModel):
    workspace_id: int
    workspace_name: str
    role: str


class MeOut(BaseModel):
    id: int
    username: str
    display_name: str | None
    workspaces: list[MembershipOut] = []
