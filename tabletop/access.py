from __future__ import annotations

from dataclasses import dataclass

import redis

from tabletop.api.models import GameSession, SessionRole
from tabletop.errors import ForbiddenError
from tabletop.session_store import get_campaign, is_campaign_member, is_participant, require_session


@dataclass(frozen=True, slots=True)
class SessionAccess:
    """Result of a successful access check for one (session, user) pair."""

    session: GameSession
    user_id: str
    role: SessionRole

    @property
    def is_dm(self) -> bool:
        return self.role == SessionRole.dm


def check_session_access(*, r: redis.Redis, session_id: str, user_id: str) -> SessionAccess:
    """Resolve the caller's role in a session.

    Rules:
    - the campaign's DM is `dm`;
    - a campaign member (has a character in the campaign) is a `participant`;
    - a user who joined the session directly is a `participant`;
    - anyone else is refused.

    Raises NotFoundError if the session does not exist and ForbiddenError if
    the caller has no access.
    """

    session = require_session(r=r, session_id=session_id)

    campaign = get_campaign(r=r, campaign_id=session.campaign_id)
    if campaign is not None and campaign.dm_id == user_id:
        return SessionAccess(session=session, user_id=user_id, role=SessionRole.dm)

    if is_campaign_member(r=r, campaign_id=session.campaign_id, user_id=user_id):
        return SessionAccess(session=session, user_id=user_id, role=SessionRole.participant)

    if is_participant(r=r, session_id=session_id, user_id=user_id):
        return SessionAccess(session=session, user_id=user_id, role=SessionRole.participant)

    raise ForbiddenError("You don't have access to this session")


def require_dm(access: SessionAccess, *, action: str) -> None:
    if not access.is_dm:
        raise ForbiddenError(f"Only the DM can {action}")


def require_owner_or_dm(access: SessionAccess, owner_id: str | None, *, action: str) -> None:
    """The DM may touch anything in the session; everyone else only what they own."""

    if not access.is_dm and owner_id != access.user_id:
        raise ForbiddenError(f"You can only {action}")
