"""
Notification facility.

NotificationBackend is the narrow interface the trigger scheduler talks to.
LocalNotificationBackend keeps triggers in the scheduled_notifications table so
they outlive the process, and a dispatcher coroutine delivers due ones as
desktop notifications through plyer. Daily triggers fire on device wall-clock
time; one installed at or after its minute today first fires tomorrow.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from plyer import notification as plyer_notification
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, delete, select

from prayer_reminder.core.db import Base, session_scope

from .timeutils import today

TRIGGER_DAILY = "daily"
TRIGGER_ONE_SHOT = "one_shot"


@dataclass(frozen=True)
class NotificationChannel:
    """Delivery channel settings (Android-style)."""
    id: str
    name: str
    importance: str = "high"
    bypass_dnd: bool = True
    lockscreen_visibility: str = "public"
    vibration_pattern: Tuple[int, ...] = (0, 250, 250, 250)


@dataclass(frozen=True)
class NotificationAction:
    identifier: str
    button_title: str
    opens_app: bool = False


@dataclass(frozen=True)
class NotificationCategory:
    identifier: str
    actions: Tuple[NotificationAction, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class NotificationContent:
    title: str
    body: str
    sound: bool = True
    category_id: Optional[str] = None
    channel_id: Optional[str] = None


@dataclass(frozen=True)
class InstalledTrigger:
    id: str
    kind: str
    content: NotificationContent
    hour: Optional[int] = None
    minute: Optional[int] = None
    fire_at: Optional[datetime] = None


class NotificationBackend(ABC):
    """Installs and cancels triggers. Triggers fire independently of the caller."""

    @abstractmethod
    async def request_permission(self) -> bool:
        pass

    @abstractmethod
    async def ensure_channel(self, channel: NotificationChannel) -> None:
        pass

    @abstractmethod
    async def register_category(self, category: NotificationCategory) -> None:
        pass

    @abstractmethod
    async def install_recurring_daily(self, hour: int, minute: int, content: NotificationContent) -> str:
        """Install a trigger repeating every day at hour:minute device time. Returns its id."""
        pass

    @abstractmethod
    async def install_one_shot(self, delay_seconds: float, content: NotificationContent) -> str:
        pass

    @abstractmethod
    async def cancel_all(self) -> None:
        pass

    @abstractmethod
    async def list_installed(self) -> List[InstalledTrigger]:
        pass


class ScheduledNotification(Base):
    """One installed trigger. fire_at and last_fired_on are device-local."""
    __tablename__ = "scheduled_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(16), nullable=False)  # daily | one_shot
    hour = Column(Integer, nullable=True)
    minute = Column(Integer, nullable=True)
    fire_at = Column(DateTime(timezone=False), nullable=True)
    last_fired_on = Column(String(10), nullable=True)  # YYYY-MM-DD
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    sound = Column(Boolean, default=True, nullable=False)
    category_id = Column(String(64), nullable=True)
    channel_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=False), nullable=False)


def _to_trigger(row: ScheduledNotification) -> InstalledTrigger:
    return InstalledTrigger(
        id=str(row.id),
        kind=row.kind,
        content=NotificationContent(
            title=row.title,
            body=row.body,
            sound=row.sound,
            category_id=row.category_id,
            channel_id=row.channel_id,
        ),
        hour=row.hour,
        minute=row.minute,
        fire_at=row.fire_at,
    )


class LocalNotificationBackend(NotificationBackend):
    APP_NAME = "Prayer Reminder"

    def __init__(
        self,
        config: Dict[str, Any],
        notifier: Optional[Callable[..., Any]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.enabled = bool(config.get("enabled", True))
        self.dispatch_interval = float(config.get("dispatch_interval", 20))
        self.misfire_grace = timedelta(seconds=int(config.get("misfire_grace", 300)))
        self.notifier = notifier or plyer_notification.notify
        self.clock = clock
        self.channels: Dict[str, NotificationChannel] = {}
        self.categories: Dict[str, NotificationCategory] = {}
        self.logger = logging.getLogger(self.__class__.__name__)

    async def request_permission(self) -> bool:
        return self.enabled

    async def ensure_channel(self, channel: NotificationChannel) -> None:
        if channel.id not in self.channels:
            self.logger.debug(f"Registered notification channel {channel.id}")
        self.channels[channel.id] = channel

    async def register_category(self, category: NotificationCategory) -> None:
        self.categories[category.identifier] = category
        actions = ", ".join(a.identifier for a in category.actions)
        self.logger.debug(f"Registered notification category {category.identifier}: {actions}")

    async def install_recurring_daily(self, hour: int, minute: int, content: NotificationContent) -> str:
        return await asyncio.to_thread(self._insert, TRIGGER_DAILY, content, hour=hour, minute=minute)

    async def install_one_shot(self, delay_seconds: float, content: NotificationContent) -> str:
        fire_at = self.clock() + timedelta(seconds=delay_seconds)
        return await asyncio.to_thread(self._insert, TRIGGER_ONE_SHOT, content, fire_at=fire_at)

    async def cancel_all(self) -> None:
        await asyncio.to_thread(self._delete_all)

    async def list_installed(self) -> List[InstalledTrigger]:
        return await asyncio.to_thread(self._select_all)

    def _insert(self, kind: str, content: NotificationContent, hour=None, minute=None, fire_at=None) -> str:
        now = self.clock()
        last_fired_on = None
        if kind == TRIGGER_DAILY and (now.hour, now.minute) >= (hour, minute):
            # Today's occurrence has started or passed; first fire is tomorrow
            last_fired_on = today(now)
        row = ScheduledNotification(
            kind=kind,
            hour=hour,
            minute=minute,
            fire_at=fire_at,
            last_fired_on=last_fired_on,
            title=content.title,
            body=content.body,
            sound=content.sound,
            category_id=content.category_id,
            channel_id=content.channel_id,
            created_at=now,
        )
        with session_scope() as session:
            session.add(row)
            session.flush()
            return str(row.id)

    def _delete_all(self) -> None:
        with session_scope() as session:
            session.execute(delete(ScheduledNotification))

    def _select_all(self) -> List[InstalledTrigger]:
        with session_scope() as session:
            rows = session.execute(select(ScheduledNotification).order_by(ScheduledNotification.id)).scalars().all()
            return [_to_trigger(row) for row in rows]

    def dispatch_due(self) -> int:
        """Deliver every trigger that is due now. Returns the number delivered."""
        now = self.clock()
        date_str = today(now)
        due: List[ScheduledNotification] = []
        with session_scope() as session:
            for row in session.execute(select(ScheduledNotification)).scalars().all():
                if row.kind == TRIGGER_DAILY:
                    if row.last_fired_on == date_str:
                        continue
                    target = now.replace(hour=row.hour, minute=row.minute, second=0, microsecond=0)
                    if target > now:
                        continue
                    row.last_fired_on = date_str
                    if now - target > self.misfire_grace:
                        self.logger.info(f"Skipping missed daily trigger {row.id} ({row.title}) from {target}")
                        continue
                    due.append(row)
                elif row.fire_at is not None and row.fire_at <= now:
                    session.delete(row)
                    if now - row.fire_at > self.misfire_grace:
                        self.logger.info(f"Dropping missed one-shot trigger {row.id} ({row.title})")
                        continue
                    due.append(row)

        delivered = 0
        for row in due:
            if self._deliver(row):
                delivered += 1
        return delivered

    def _deliver(self, row: ScheduledNotification) -> bool:
        try:
            self.notifier(title=row.title, message=row.body, app_name=self.APP_NAME, timeout=10)
            self.logger.info(f"Delivered notification: {row.title}")
            return True
        except Exception as e:
            self.logger.error(f"Error delivering notification {row.title}: {e}")
            return False

    async def run_dispatcher(self, stop_event: asyncio.Event) -> None:
        """Poll for due triggers until stop_event is set."""
        self.logger.info(f"Notification dispatcher started (every {self.dispatch_interval}s)")
        while not stop_event.is_set():
            try:
                await asyncio.to_thread(self.dispatch_due)
            except Exception as e:
                self.logger.exception(f"Notification dispatch failed: {e}")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.dispatch_interval)
            except asyncio.TimeoutError:
                pass
        self.logger.info("Notification dispatcher stopped")
