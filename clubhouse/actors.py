import logging
from abc import ABC, abstractmethod
from typing import Optional

from flask import has_request_context, request

from matchday.models import User

from .models import db, UserRecord

logger = logging.getLogger(__name__)

ACTOR_HEADER = 'X-Actor-Id'


class CurrentActorResolver(ABC):
    """Supplies the signed-in user. Suspended accounts resolve to None."""

    @abstractmethod
    def current_actor(self) -> Optional[User]:
        pass


class StaticActorResolver(CurrentActorResolver):

    def __init__(self, actor: Optional[User] = None):
        self.actor = actor

    def current_actor(self) -> Optional[User]:
        if self.actor is not None and self.actor.is_suspended:
            return None
        return self.actor


class RequestActorResolver(CurrentActorResolver):
    """
    Reads the actor id from the request header set by the upstream
    gateway. Authentication happened there; this only looks the user up.
    """

    def current_actor(self) -> Optional[User]:
        if not has_request_context():
            return None

        actor_id = request.headers.get(ACTOR_HEADER)
        if not actor_id:
            return None

        record = db.session.get(UserRecord, actor_id)
        if record is None:
            logger.info(f"Unknown actor id {actor_id}")
            return None
        if record.is_suspended:
            logger.info(f"Suspended actor {actor_id} treated as signed out")
            return None
        return record.to_user()
