"""
Базовый синхронизатор сущности: выгрузка, загрузка и слияние с облаком.

Цикл одной сущности: сначала выгружаются ожидающие записи, затем
загружаются и сливаются удалённые. Каждое решение о слиянии проходит
через ConflictResolver с глобальной стратегией. Слияние идемпотентно:
повторное применение той же удалённой строки ничего не меняет, поэтому
вебхук и плановая загрузка могут пересекаться.
"""
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional, Sequence, Tuple, Type
from shopsync.core.exceptions import (
    ApiError, AuthError, ConflictError, MissingIdentifier, NotAuthenticated, SyncError
)
from shopsync.core.time_utils import as_utc, format_timestamp, parse_timestamp, utcnow
from shopsync.crud.records import SyncStore
from shopsync.models.mixins import SyncStatus
from shopsync.services.batch_uploader import BatchResult, BatchUploader
from shopsync.services.cloud_client import CloudClient
from shopsync.services.conflicts import ConflictResolver, Winner
from shopsync.services.identity import IdentityResolver, RemoteIdentity
from shopsync.services.status_broadcaster import StatusBroadcaster, SyncEventType

logger = logging.getLogger(__name__)

@dataclass
class RetryPolicy:
    max_attempts: int = 5
    backoff_base_seconds: int = 30
    backoff_max_seconds: int = 3600

@dataclass
class SyncContext:
    """Общие зависимости всех синхронизаторов"""
    store: SyncStore
    cloud: CloudClient
    conflicts: ConflictResolver
    broadcaster: Optional[StatusBroadcaster] = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    batch_size: int = 100

    def __post_init__(self):
        self.identity = IdentityResolver(self.store)

@dataclass
class SyncCounters:
    uploaded: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0

    def merge(self, other: "SyncCounters") -> "SyncCounters":
        for name, value in asdict(other).items():
            setattr(self, name, getattr(self, name) + value)
        return self

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

class EntitySyncer:
    model: ClassVar[Type] = None
    table: ClassVar[str] = None
    domain: ClassVar[str] = None

    # Поля, которые один в один совпадают в локальной и облачной схеме
    fields: ClassVar[Tuple[str, ...]] = ()
    datetime_fields: ClassVar[Tuple[str, ...]] = ()

    # Колонка облака, где хранится ID объекта в POS
    external_ref_column: ClassVar[Optional[str]] = None

    order_by: ClassVar[Optional[str]] = None

    def __init__(self, context: SyncContext):
        self.context = context
        self.store = context.store
        self.cloud = context.cloud
        self.conflicts = context.conflicts
        self.identity = context.identity
        self.broadcaster = context.broadcaster
        self.batch_uploader = BatchUploader(context.cloud, context.batch_size)

        # Наблюдаемое состояние
        self.is_syncing = False
        self.last_sync_date: Optional[datetime] = None
        self.sync_error: Optional[str] = None
        self.last_result = SyncCounters()

        # Самый свежий из уже виденных облачных tombstone (по часам облака)
        self._tombstones_checked_at: Optional[datetime] = None

    # Сериализация

    def to_remote(self, record: Any, tenant_id: str) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "id": record.local_id,
            "shop_id": tenant_id,
            "created_at": format_timestamp(record.created_at or utcnow()),
            "updated_at": format_timestamp(record.updated_at or utcnow()),
            "deleted_at": format_timestamp(record.deleted_at),
            "sync_version": 1,
        }
        for name in self.fields:
            value = getattr(record, name)
            if name in self.datetime_fields:
                value = format_timestamp(value)
            row[name] = value
        if self.external_ref_column:
            row[self.external_ref_column] = record.external_ref
        return row

    def apply_remote(self, record: Any, row: Dict[str, Any]) -> None:
        for name in self.fields:
            if name not in row:
                continue
            value = row[name]
            if name in self.datetime_fields:
                value = parse_timestamp(value)
            setattr(record, name, value)
        if self.external_ref_column and row.get(self.external_ref_column):
            record.external_ref = row[self.external_ref_column]
        record.tenant_id = row.get("shop_id", record.tenant_id)
        record.updated_at = parse_timestamp(row.get("updated_at")) or record.updated_at
        record.deleted_at = parse_timestamp(row.get("deleted_at"))

    def remote_identity(self, row: Dict[str, Any]) -> RemoteIdentity:
        return RemoteIdentity(
            local_id=row.get("id"),
            external_ref=row.get(self.external_ref_column) if self.external_ref_column else None
        )

    def after_merge(self, record: Any) -> None:
        """Хук для побочных эффектов после слияния"""
        pass

    # Выгрузка

    async def upload(self, record: Any) -> None:
        """Upsert записи в облако по local_id и отметка synced"""
        tenant_id = self.cloud.require_tenant()

        if not record.local_id:
            raise MissingIdentifier(f"{self.model.__name__} missing local_id")

        row = self.to_remote(record, tenant_id)
        version = record.updated_at

        await self.cloud.upsert(self.table, [row])

        # Пока шёл запрос, запись могли изменить - тогда она остаётся pending
        if record.updated_at == version:
            record.tenant_id = tenant_id
            record.mark_synced()
        self.store.save()

    async def upload_pending_changes(self) -> SyncCounters:
        """
        Последовательная выгрузка всех pending записей.

        Сетевая или 5xx ошибка прерывает пакет: оставшиеся записи ждут
        следующего цикла. 4xx и ошибки данных касаются только одной
        записи, пакет продолжается. Отказ в доступе (401/403) прерывает
        домен без изменения записей.
        """
        self.cloud.require_tenant()
        counters = SyncCounters()
        policy = self.context.retry_policy

        pending = self.store.pending(self.model)
        if not pending:
            return counters

        logger.info(f"Uploading {len(pending)} pending {self.domain}")

        for record in pending:
            try:
                await self.upload(record)
                counters.uploaded += 1

            except (NotAuthenticated, AuthError):
                # Сессия недействительна: домен прерывается, запись остаётся pending
                raise

            except ConflictError as e:
                logger.error(f"Skipping {self.domain} record {record.local_id}: {e}")
                counters.skipped += 1

            except ApiError as e:
                if e.retryable:
                    self._record_retry(record, e, policy)
                    counters.failed += 1
                    raise
                logger.error(f"Remote rejected {self.domain} record {record.local_id}: {e}")
                record.mark_error(str(e))
                self.store.save()
                counters.failed += 1

            except SyncError as e:
                self._record_retry(record, e, policy)
                counters.failed += 1
                raise

        return counters

    def _record_retry(self, record: Any, error: Exception, policy: RetryPolicy):
        record.mark_retry(
            str(error),
            policy.backoff_base_seconds,
            policy.backoff_max_seconds,
            policy.max_attempts
        )
        self.store.save()
        if record.sync_status == SyncStatus.ERROR.value:
            logger.error(
                f"{self.domain} record {record.local_id} gave up after {record.sync_attempts} attempts: {error}"
            )
        else:
            logger.warning(
                f"{self.domain} record {record.local_id} upload failed "
                f"(attempt {record.sync_attempts}), next try at {record.next_attempt_at}: {error}"
            )

    async def bulk_upload(self, records: Sequence[Any]) -> BatchResult:
        """
        Пакетная выгрузка кусками. Не атомарна: записи из упавших кусков
        остаются pending, из успешных - становятся synced.
        """
        tenant_id = self.cloud.require_tenant()

        by_id = {}
        rows = []
        for record in records:
            if not record.local_id:
                logger.error(f"Skipping {self.domain} record without local_id in bulk upload")
                continue
            by_id[record.local_id] = (record, record.updated_at)
            rows.append(self.to_remote(record, tenant_id))

        result = await self.batch_uploader.upload(self.table, rows)

        for local_id in result.committed_ids:
            record, version = by_id[local_id]
            if record.updated_at == version:
                record.tenant_id = tenant_id
                record.mark_synced()
        for local_id in result.failed_ids:
            record, _ = by_id[local_id]
            record.last_sync_error = "; ".join(result.errors)
        self.store.save()
        return result

    # Загрузка

    async def download(self) -> SyncCounters:
        """Загрузка всех неудалённых строк арендатора и слияние с локальными"""
        tenant_id = self.cloud.require_tenant()

        self.is_syncing = True
        try:
            counters = SyncCounters()

            rows = await self.cloud.select(self.table, tenant_id, order=self.order_by)
            for row in rows:
                self._merge_row(row, counters)
            self.store.save()

            tombstones = await self.cloud.select(
                self.table,
                tenant_id,
                deleted_only=True,
                updated_since=self._tombstones_checked_at
            )
            for row in tombstones:
                if self.apply_tombstone(row):
                    counters.deleted += 1
                self._advance_tombstone_checkpoint(parse_timestamp(row.get("updated_at")))
            self.store.save()

            self.last_sync_date = utcnow()
            logger.info(
                f"Downloaded {len(rows)} {self.domain}: created={counters.created}, "
                f"updated={counters.updated}, deleted={counters.deleted}"
            )
            return counters
        finally:
            self.is_syncing = False

    def _advance_tombstone_checkpoint(self, seen: Optional[datetime]):
        if seen is not None and (self._tombstones_checked_at is None or seen > self._tombstones_checked_at):
            self._tombstones_checked_at = seen

    async def download_one(self, local_id: str) -> str:
        """Точечная загрузка одной записи; is_syncing не трогается"""
        tenant_id = self.cloud.require_tenant()

        rows = await self.cloud.select(
            self.table,
            tenant_id,
            filters={"id": local_id},
            include_deleted=True
        )
        if not rows:
            return "missing"

        row = rows[0]
        if row.get("deleted_at"):
            outcome = "deleted" if self.apply_tombstone(row) else "unchanged"
        else:
            outcome = self.merge_remote(row)
        self.store.save()
        return outcome

    def _merge_row(self, row: Dict[str, Any], counters: SyncCounters):
        try:
            outcome = self.merge_remote(row)
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Malformed {self.domain} row {row.get('id')}: {e}")
            counters.failed += 1
            return
        setattr(counters, outcome, getattr(counters, outcome) + 1)

    def merge_remote(self, row: Dict[str, Any]) -> str:
        """Создание или слияние одной облачной строки: created / updated / unchanged"""
        if not row.get("id"):
            raise ValueError("remote row has no id")

        resolution = self.identity.resolve(self.model, self.remote_identity(row))

        if resolution.is_new:
            record = self.model(local_id=row["id"], created_at=parse_timestamp(row.get("created_at")) or utcnow())
            self.apply_remote(record, row)
            record.mark_synced()
            self.store.add(record)
            self.store.flush()
            self.after_merge(record)
            return "created"

        local = resolution.existing
        remote_updated_at = parse_timestamp(row.get("updated_at"))
        winner = self.conflicts.resolve(local, remote_updated_at)
        if winner == Winner.LOCAL:
            return "unchanged"

        same_id = resolution.matched_by == "local_id"

        # Та же версия уже применена
        if remote_updated_at is not None and as_utc(local.updated_at) == remote_updated_at:
            if not same_id or local.sync_status == SyncStatus.SYNCED.value:
                return "unchanged"

        self.apply_remote(local, row)
        if same_id:
            local.mark_synced()
        elif local.sync_status == SyncStatus.SYNCED.value:
            # Строка облака под чужим id: своя запись должна попасть в облако
            local.mark_pending()
        self.store.flush()
        self.after_merge(local)
        return "updated"

    def apply_tombstone(self, row: Dict[str, Any]) -> bool:
        """Подтверждённое удаление в облаке: жёсткое удаление локальной записи"""
        local = self.store.get(self.model, row.get("id"))
        if local is None:
            return False

        winner = self.conflicts.resolve(local, parse_timestamp(row.get("updated_at")))
        if winner == Winner.LOCAL:
            logger.info(f"Keeping local {self.domain} {local.local_id}: newer than remote deletion")
            return False

        if local.external_ref:
            self.store.remove_mapping(local.external_ref)
        self.store.delete(local)
        self.store.flush()
        logger.info(f"Applied remote deletion of {self.domain} {local.local_id}")
        return True

    # Полный цикл и служебные операции

    async def sync(self) -> SyncCounters:
        """Выгрузка pending, затем загрузка"""
        self.sync_error = None
        try:
            counters = await self.upload_pending_changes()
            counters.merge(await self.download())
        except SyncError as e:
            self.sync_error = str(e)
            raise
        self.last_result = counters
        return counters

    def mark_deleted(self, record: Any) -> None:
        """Локальное мягкое удаление; tombstone уйдёт со следующей выгрузкой"""
        now = utcnow()
        record.deleted_at = now
        record.touch(now)
        self.store.save()

    def retry_failed(self) -> int:
        """Вернуть записи из error в очередь"""
        failed = self.store.fetch(self.model, [self.model.sync_status == SyncStatus.ERROR.value])
        for record in failed:
            record.mark_pending()
        self.store.save()
        if failed:
            logger.info(f"Re-queued {len(failed)} failed {self.domain}")
        return len(failed)

    def stats(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "is_syncing": self.is_syncing,
            "last_sync_date": format_timestamp(self.last_sync_date),
            "sync_error": self.sync_error,
            "by_status": self.store.count_by_status(self.model),
        }

    def _publish(self, event_type: SyncEventType, data: Dict[str, Any], channel: str = "sync_updates"):
        if self.broadcaster is not None:
            self.broadcaster.publish(event_type, data, channel)
