"""Identity models for callers of the moderation API."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    """Role hierarchy: admin > moderator > member."""

    admin = "admin"
    moderator = "moderator"
    member = "member"

    @property
    def level(self) -> int:
        """Return numeric level for comparison (higher = more privileges)."""
        return {
            Role.admin: 30,
            Role.moderator: 20,
            Role.member: 10,
        }[self]


@dataclass
class User:
    """An authenticated caller as resolved by the identity layer."""

    id: str
    email: str = ""
    roles: list[Role] = field(default_factory=list)

    def __post_init__(self) -> None:
        roles = []
        for role in self.roles:
            try:
                roles.append(role if isinstance(role, Role) else Role(str(role).lower()))
            except ValueError:
                # Platform roles such as "authenticated" carry no moderation rights.
                continue
        self.roles = roles or [Role.member]

    @property
    def role(self) -> Role:
        """The highest role held."""
        return max(self.roles, key=lambda r: r.level)
