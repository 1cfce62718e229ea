"""
SQLAlchemy ORM models mirroring database/schema.sql.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class GitHubAppInstallation(Base):
    """One linked GitHub App installation per internal user."""

    __tablename__ = "github_app_installations"

    user_id = Column(String(64), primary_key=True)
    installation_id = Column(String(64), nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class GitHubOAuthState(Base):
    """Server-side record of the one live install state per user."""

    __tablename__ = "github_oauth_states"

    state = Column(String(128), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
