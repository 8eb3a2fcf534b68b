import enum
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from shopsync.core.time_utils import as_utc

logger = logging.getLogger(__name__)

DISTANT_PAST = datetime.min.replace(tzinfo=timezone.utc)

class ConflictStrategy(str, enum.Enum):
    SERVER_WINS = "server_wins"
    LOCAL_WINS = "local_wins"
    NEWEST_WINS = "newest_wins"

class Winner(str, enum.Enum):
    LOCAL = "local"
    REMOTE = "remote"

class ConflictResolver:
    """
    Решает, какая версия записи побеждает при слиянии.

    Стратегия задаётся глобально. Для newest_wins при равных updated_at
    побеждает удалённая версия - так реплики, применяющие один и тот же
    поток событий, сходятся к одному результату.
    """

    def __init__(self, strategy: ConflictStrategy = ConflictStrategy.NEWEST_WINS):
        self.strategy = ConflictStrategy(strategy)

    def resolve(
        self,
        local: Any,
        remote_updated_at: Optional[datetime],
        strategy: Optional[ConflictStrategy] = None
    ) -> Winner:
        strategy = ConflictStrategy(strategy or self.strategy)

        if strategy == ConflictStrategy.SERVER_WINS:
            return Winner.REMOTE
        if strategy == ConflictStrategy.LOCAL_WINS:
            return Winner.LOCAL

        local_date = as_utc(getattr(local, "updated_at", None)) or DISTANT_PAST
        remote_date = as_utc(remote_updated_at) or DISTANT_PAST

        if local_date > remote_date:
            return Winner.LOCAL
        return Winner.REMOTE
