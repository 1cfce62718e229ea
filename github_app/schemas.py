"""
Pydantic schemas shared by the GitHub App client, linker and routes.
"""

from __future__ import annotations

from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class TokenPair(BaseModel):
    """User-to-server token pair returned by the code exchange or a refresh."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    refresh_token_expires_in: Optional[int] = None


class Installation(BaseModel):
    """One entry of ``GET /user/installations``."""

    id: str
    app_id: Optional[str] = None
    app_slug: Optional[str] = None
    account_login: Optional[str] = None
    target_type: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Installation":
        account = data.get("account") or {}
        app_id = data.get("app_id")
        return cls(
            id=str(data["id"]),
            app_id=str(app_id) if app_id is not None else None,
            app_slug=data.get("app_slug"),
            account_login=account.get("login"),
            target_type=data.get("target_type"),
        )


class GitRepo(BaseModel):
    """Read-only projection of a repository visible to an installation."""

    id: int
    name: str
    full_name: str
    owner_name: Optional[str] = None
    private: bool = False
    default_branch: Optional[str] = None
    html_url: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "GitRepo":
        return cls(
            id=data["id"],
            name=data["name"],
            full_name=data["full_name"],
            owner_name=(data.get("owner") or {}).get("login"),
            private=data.get("private", False),
            default_branch=data.get("default_branch"),
            html_url=data.get("html_url"),
            description=data.get("description"),
        )


class InstallationCredential(BaseModel):
    """The durable link between an internal user and a GitHub App installation."""

    user_id: str
    installation_id: str
    access_token: str
    refresh_token: str


class InstallStatus(BaseModel):
    installed: bool
    installation_id: Optional[str] = None


class ApiSuccess(BaseModel, Generic[T]):
    status: str = "ok"
    results: Optional[T] = None


class ApiRepoList(BaseModel):
    status: str = "ok"
    results: List[GitRepo] = Field(default_factory=list)
