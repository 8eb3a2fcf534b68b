"""
Пакетная выгрузка в облако.

Строки режутся на куски фиксированного размера, по одному upsert на
кусок. Выгрузка НЕ атомарна между кусками: ошибка в одном куске не
откатывает уже зафиксированные и не мешает следующим. Частичный успех -
нормальный результат, вызывающий получает его в BatchResult.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Sequence
from shopsync.core.exceptions import AuthError, NotAuthenticated, SyncError
from shopsync.services.cloud_client import CloudClient

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100

def chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]

@dataclass
class BatchResult:
    committed_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    chunks_total: int = 0
    chunks_failed: int = 0

    @property
    def is_complete(self) -> bool:
        return self.chunks_failed == 0

class BatchUploader:
    def __init__(self, cloud: CloudClient, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.cloud = cloud
        self.chunk_size = chunk_size

    async def upload(self, table: str, rows: List[Dict[str, Any]], key: str = "id") -> BatchResult:
        result = BatchResult()

        for index, chunk in enumerate(chunked(rows, self.chunk_size), start=1):
            result.chunks_total += 1
            ids = [str(row[key]) for row in chunk]
            try:
                await self.cloud.upsert(table, list(chunk), on_conflict=key)
            except (NotAuthenticated, AuthError):
                raise
            except SyncError as e:
                logger.error(f"Chunk {index} of {table} failed ({len(chunk)} rows): {e}")
                result.chunks_failed += 1
                result.failed_ids.extend(ids)
                result.errors.append(f"chunk {index}: {e}")
                continue
            result.committed_ids.extend(ids)

        if result.chunks_failed:
            logger.warning(
                f"Bulk upload to {table} partially failed: "
                f"{len(result.committed_ids)} committed, {len(result.failed_ids)} failed"
            )
        else:
            logger.info(f"Bulk upload to {table}: {len(result.committed_ids)} rows in {result.chunks_total} chunks")
        return result
