# =============================================================================
# Profile Store — Read-Only Access to Authoritative Profiles
# =============================================================================
#
# The matching engine never owns profiles. It reads them through the
# ProfileStore protocol and treats every copy as a possibly-stale snapshot.
#
# CONTRACT:
#   get_by_id(id)          → Profile | None (None = NotFound)
#   get_many_by_id(ids)    → list[Profile]; missing ids silently omitted
#   list_profiles(...)     → candidate population for the scoring-only path
#
# DESIGN DECISION: Protocol (structural typing), same as the LLM and
# similarity-index layers. Tests pass plain fakes with the same methods.
#
# ARCHITECTURE:
#   ProfileStore (Protocol)
#   └── SqlProfileStore — `users` table via async SQLAlchemy sessions
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import select

from netmatch.db.engine import async_session_factory
from netmatch.db.models import User

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------

PREFERENCE_FLAGS = ("mentor", "invest", "discuss", "collaborate", "hire")


@dataclass(frozen=True)
class Preferences:
    """What a person is looking for on the network."""

    mentor: bool = False
    invest: bool = False
    discuss: bool = False
    collaborate: bool = False
    hire: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Preferences:
        """
        Build preferences from a stored JSON object.

        A profile with no preferences object at all is treated as someone
        open to professional discussion and nothing else.
        """
        if not data:
            return cls(discuss=True)
        return cls(**{flag: bool(data.get(flag, False)) for flag in PREFERENCE_FLAGS})

    def to_dict(self) -> dict[str, bool]:
        return {flag: getattr(self, flag) for flag in PREFERENCE_FLAGS}

    def active(self) -> list[str]:
        """Names of the flags that are switched on, in canonical order."""
        return [flag for flag in PREFERENCE_FLAGS if getattr(self, flag)]


@dataclass
class Profile:
    """
    A read-only snapshot of a user profile.

    Skills and interests are stored as lists (input order is preserved for
    reasons and complementary-skill output) but compared as sets.
    """

    id: str
    name: str
    title: str = ""
    company: str = ""
    location: str = ""
    bio: str = ""
    skills: list[str] = field(default_factory=list)
    interests: list[str] = field(default_factory=list)
    preferences: Preferences = field(default_factory=Preferences)
    connections: int = 0

    def to_dict(self) -> dict[str, Any]:
        """JSON-serialisable form, used for tool results and cache rows."""
        return {
            "id": self.id,
            "name": self.name,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "bio": self.bio,
            "skills": list(self.skills),
            "interests": list(self.interests),
            "preferences": self.preferences.to_dict(),
            "connections": self.connections,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Profile:
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            title=data.get("title") or "",
            company=data.get("company") or "",
            location=data.get("location") or "",
            bio=data.get("bio") or "",
            skills=_dedupe(data.get("skills") or []),
            interests=_dedupe(data.get("interests") or []),
            preferences=Preferences.from_dict(data.get("preferences")),
            connections=int(data.get("connections") or 0),
        )


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class ProfileStore(Protocol):
    """Read-only view of the authoritative profile records."""

    async def get_by_id(self, profile_id: str) -> Profile | None:
        """Return the profile, or None when no such profile exists."""
        ...

    async def get_many_by_id(self, profile_ids: Iterable[str]) -> list[Profile]:
        """
        Fetch many profiles in one round trip.

        Missing ids are silently omitted. Result order is unspecified.
        """
        ...

    async def list_profiles(
        self,
        exclude_id: str | None = None,
        limit: int = 1000,
    ) -> list[Profile]:
        """List profiles for the scoring-only path."""
        ...


# ---------------------------------------------------------------------------
# Implementation: PostgreSQL `users` table
# ---------------------------------------------------------------------------


class SqlProfileStore:
    """
    Profile store backed by the `users` table.

    Each call opens its own short-lived session, so the store can be shared
    across concurrent requests without sharing a transaction.
    """

    def __init__(self, session_factory=async_session_factory) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, profile_id: str) -> Profile | None:
        async with self._session_factory() as session:
            user = await session.get(User, profile_id)
        if user is None:
            logger.debug("Profile %s not found", profile_id)
            return None
        return profile_from_row(user)

    async def get_many_by_id(self, profile_ids: Iterable[str]) -> list[Profile]:
        ids = list(dict.fromkeys(profile_ids))
        if not ids:
            return []

        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.id.in_(ids)))
            users = result.scalars().all()

        logger.debug("Fetched %d/%d profiles", len(users), len(ids))
        return [profile_from_row(u) for u in users]

    async def list_profiles(
        self,
        exclude_id: str | None = None,
        limit: int = 1000,
    ) -> list[Profile]:
        stmt = select(User).order_by(User.created_at).limit(limit)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            users = result.scalars().all()

        return [profile_from_row(u) for u in users]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def profile_from_row(user: User) -> Profile:
    """Map a `users` row to a Profile snapshot, filling empty fields."""
    return Profile(
        id=str(user.id),
        name=user.name or "",
        title=user.title or "",
        company=user.company or "",
        location=user.location or "",
        bio=user.bio or "",
        skills=_dedupe(user.skills or []),
        interests=_dedupe(user.interests or []),
        preferences=Preferences.from_dict(user.preferences),
        connections=user.connections or 0,
    )


def _dedupe(values: Iterable[str]) -> list[str]:
    """Drop blanks and duplicates while keeping first-seen order."""
    return list(dict.fromkeys(v for v in values if v))
