"""
Moderator Matching
==================

Skill-based moderator selection.

Fallback chain, first hit wins:
1. a moderator whose skills cover one of the required skills
2. any moderator
3. any admin
4. nobody (the ticket stays unassigned)
"""

from typing import Iterable, List, Optional

from ticketflow.config import GENERAL_SUPPORT_SKILL, UserRole
from ticketflow.shared.infrastructure.logging import get_logger
from ticketflow.tickets.application import IUserRepository
from ticketflow.tickets.domain import User

logger = get_logger(__name__)


def _normalize(skills: Iterable[str]) -> List[str]:
    return [s.strip().lower() for s in skills if s and s.strip()]


class ModeratorMatcher:
    """Picks the staff member a triaged ticket is assigned to."""

    def __init__(self, users: IUserRepository):
        self._users = users

    @staticmethod
    def is_routable(required_skills: List[str]) -> bool:
        """False for an empty list or the General Support sentinel."""
        wanted = _normalize(required_skills)
        return bool(wanted) and wanted != [GENERAL_SUPPORT_SKILL.lower()]

    @staticmethod
    def covers(user: User, required_skills: List[str]) -> bool:
        """Case-insensitive: some skill of the user contains a required skill."""
        have = _normalize(user.skills)
        return any(want in skill for want in _normalize(required_skills) for skill in have)

    async def match(self, required_skills: List[str]) -> Optional[User]:
        """
        Select a moderator for the given skills.

        Returns None when there is no moderator and no admin; that is a
        valid outcome, not an error.
        """
        moderators = await self._users.list_by_role(UserRole.MODERATOR)

        if self.is_routable(required_skills):
            for moderator in moderators:
                if self.covers(moderator, required_skills):
                    logger.info(
                        "Moderator matched by skill",
                        extra={"moderator_id": moderator.id, "skills": required_skills}
                    )
                    return moderator

        if moderators:
            logger.info(
                "No skill match, falling back to first moderator",
                extra={"moderator_id": moderators[0].id, "skills": required_skills}
            )
            return moderators[0]

        admins = await self._users.list_by_role(UserRole.ADMIN)
        if admins:
            logger.info(
                "No moderators available, falling back to admin",
                extra={"admin_id": admins[0].id}
            )
            return admins[0]

        logger.warning("No moderator or admin available", extra={"skills": required_skills})
        return None
