"""
Match reminders.

A reminder fires a fixed lead time before kick-off. Scheduling replaces any
earlier reminder for the same (match, user); reminders whose fire time has
already passed are not scheduled at all. Delivery is somebody else's job:
the Redis scheduler only records what is due.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List

import redis

from matchday.models import format_timestamp, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

DEFAULT_LEAD_MINUTES = 60
DUE_KEY = "reminders:due"


def reminder_id(match_id: str, user_id: str) -> str:
    return f"clubhouse.match.reminder.{match_id.lower()}.{user_id.lower()}"


@dataclass
class Reminder:
    match_id: str
    user_id: str
    title: str
    body: str
    start_time: datetime
    remind_at: datetime

    @property
    def id(self) -> str:
        return reminder_id(self.match_id, self.user_id)


class NotificationScheduler(ABC):

    def __init__(self, lead_minutes: int = DEFAULT_LEAD_MINUTES, clock: Callable[[], datetime] = utcnow):
        self.lead_minutes = lead_minutes
        self.clock = clock

    def build_reminder(self, match_id: str, user_id: str, title: str, start_time: datetime) -> Reminder:
        return Reminder(
            match_id=match_id,
            user_id=user_id,
            title="Match Reminder",
            body=f"{title} starts at {start_time.strftime('%d %b %Y %H:%M')}.",
            start_time=start_time,
            remind_at=start_time - timedelta(minutes=self.lead_minutes),
        )

    def schedule(self, match_id: str, user_id: str, title: str, start_time: datetime) -> bool:
        """Returns False when the reminder time has already passed or could not be stored."""
        reminder = self.build_reminder(match_id, user_id, title, start_time)
        if reminder.remind_at <= self.clock():
            self.cancel(match_id, user_id)
            return False
        return self._store(reminder)

    @abstractmethod
    def _store(self, reminder: Reminder) -> bool:
        pass

    @abstractmethod
    def cancel(self, match_id: str, user_id: str):
        pass


class NullReminderScheduler(NotificationScheduler):
    """Keeps reminders in memory. Used when Redis is disabled."""

    def __init__(self, lead_minutes: int = DEFAULT_LEAD_MINUTES, clock: Callable[[], datetime] = utcnow):
        super().__init__(lead_minutes, clock)
        self.pending = {}

    def _store(self, reminder: Reminder) -> bool:
        self.pending[reminder.id] = reminder
        return True

    def cancel(self, match_id: str, user_id: str):
        self.pending.pop(reminder_id(match_id, user_id), None)


class RedisReminderScheduler(NotificationScheduler):
    """
    Reminders in Redis: one hash per reminder plus a sorted set of ids
    scored by fire time, so a delivery worker can range-scan what is due.

    Reminders are advisory. A Redis outage while storing or cancelling one
    is logged and the caller carries on.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        lead_minutes: int = DEFAULT_LEAD_MINUTES,
        clock: Callable[[], datetime] = utcnow
    ):
        super().__init__(lead_minutes, clock)
        self.redis = redis_client

    def _store(self, reminder: Reminder) -> bool:
        try:
            pipe = self.redis.pipeline()
            pipe.hset(reminder.id, mapping={
                'match_id': reminder.match_id,
                'user_id': reminder.user_id,
                'title': reminder.title,
                'body': reminder.body,
                'start_time': format_timestamp(reminder.start_time),
                'remind_at': format_timestamp(reminder.remind_at),
            })
            pipe.zadd(DUE_KEY, {reminder.id: reminder.remind_at.timestamp()})
            pipe.execute()
        except redis.exceptions.RedisError as e:
            logger.warning(f"Could not schedule {reminder.id}: {e}")
            return False
        logger.debug(f"Scheduled {reminder.id} for {reminder.remind_at.isoformat()}")
        return True

    def cancel(self, match_id: str, user_id: str):
        rid = reminder_id(match_id, user_id)
        try:
            pipe = self.redis.pipeline()
            pipe.zrem(DUE_KEY, rid)
            pipe.delete(rid)
            pipe.execute()
        except redis.exceptions.RedisError as e:
            logger.warning(f"Could not cancel {rid}: {e}")

    def due_reminders(self, now: datetime = None) -> List[Reminder]:
        now = now or self.clock()
        reminders = []
        for rid in self.redis.zrangebyscore(DUE_KEY, 0, now.timestamp()):
            data = self.redis.hgetall(rid)
            if not data:
                # Hash expired or was deleted without the index entry.
                self.redis.zrem(DUE_KEY, rid)
                continue
            reminders.append(Reminder(
                match_id=data['match_id'],
                user_id=data['user_id'],
                title=data['title'],
                body=data['body'],
                start_time=parse_timestamp(data['start_time']),
                remind_at=parse_timestamp(data['remind_at']),
            ))
        return reminders

    def pending_count(self) -> int:
        return self.redis.zcard(DUE_KEY)
