import asyncio
import json
import logging
from typing import Dict, Set, List, Optional, Any
from datetime import datetime
from dataclasses import dataclass, asdict
from enum import Enum
import uuid

logger = logging.getLogger(__name__)

class SyncEventType(str, Enum):
    """Типы событий синхронизации"""
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    SYNC_ERROR = "sync_error"
    SYNC_SKIPPED = "sync_skipped"
    DOMAIN_STATUS = "domain_status"
    RECORD_UPDATED = "record_updated"
    LOW_STOCK_ALERT = "low_stock_alert"
    STOCK_ADJUSTED = "stock_adjusted"
    WEBHOOK_RECEIVED = "webhook_received"

@dataclass
class SyncEvent:
    """Структура события"""
    type: SyncEventType
    data: Dict[str, Any]
    timestamp: str = ""
    event_id: str = None

    def __post_init__(self):
        if self.event_id is None:
            self.event_id = str(uuid.uuid4())
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

class StatusBroadcaster:
    """
    Раздача событий синхронизации наблюдателям (UI и пр.).

    Каждый подписчик получает свою очередь. Медленный подписчик с
    переполненной очередью теряет старые события, а не тормозит движок.
    """

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self.subscribers: Dict[str, Set[asyncio.Queue]] = {"all": set()}

        # Статистика
        self.stats = {
            "events_published": 0,
            "events_dropped": 0,
        }

    def subscribe(self, channels: Optional[List[str]] = None) -> asyncio.Queue:
        """Подписка на каналы; возвращает очередь событий"""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        for channel in channels or ["all"]:
            self.subscribers.setdefault(channel, set()).add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        for queues in self.subscribers.values():
            queues.discard(queue)

    def publish(self, event_type: SyncEventType, data: Dict[str, Any], channel: str = "sync_updates") -> SyncEvent:
        event = SyncEvent(type=event_type, data=data)

        targets = set(self.subscribers.get(channel, set())) | self.subscribers["all"]
        for queue in targets:
            if queue.full():
                # Выбрасываем самое старое событие
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                self.stats["events_dropped"] += 1
            queue.put_nowait(event)

        self.stats["events_published"] += 1
        logger.debug(f"Event {event.type.value} published to {len(targets)} subscribers")
        return event

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "subscribers_by_channel": {
                channel: len(queues) for channel, queues in self.subscribers.items()
            },
        }
