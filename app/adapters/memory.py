"""In-process document store for local development and tests."""
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel

from app.adapters.base import (
    PersistenceGateway,
    RecordKind,
    validate_record,
)
from app.adapters.change_feed import ChangeFeed
from app.core.exceptions import ConflictException, NotFoundException, InvalidArgumentException

logger = logging.getLogger(__name__)


class InMemoryGateway(PersistenceGateway):
    """Dict-backed gateway with the same versioning rules as the DynamoDB one.

    Records are copied on the way in and out so callers can never mutate
    stored state without going through ``put``/``update``.
    """

    service_name = "memory"

    def __init__(self, change_feed: Optional[ChangeFeed] = None):
        super().__init__(change_feed)
        self._tables: Dict[RecordKind, Dict[str, BaseModel]] = {kind: {} for kind in RecordKind}

    async def get_by_id(self, kind: RecordKind, record_id: str) -> Optional[BaseModel]:
        record = self._tables[RecordKind(kind)].get(record_id)
        return record.model_copy(deep=True) if record is not None else None

    async def put(
        self,
        kind: RecordKind,
        record_id: str,
        record: Union[BaseModel, Dict[str, Any]],
        only_if_absent: bool = False
    ) -> BaseModel:
        kind = RecordKind(kind)
        table = self._tables[kind]
        before = table.get(record_id)
        if before is not None and only_if_absent:
            raise ConflictException(f"{kind.value} record already exists", resource_id=record_id)

        stored = validate_record(kind, record)
        if stored.id != record_id:
            raise InvalidArgumentException("record id does not match key", field="id")
        stored.version = (before.version or 0) + 1 if before is not None else 1
        table[record_id] = stored
        logger.debug(f"put {kind.value}/{record_id} v{stored.version}")

        await self.publish_change(kind, record_id, before, stored)
        return stored.model_copy(deep=True)

    async def update(
        self,
        kind: RecordKind,
        record_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> BaseModel:
        kind = RecordKind(kind)
        table = self._tables[kind]
        before = table.get(record_id)
        if before is None:
            raise NotFoundException(kind.value, record_id)
        if expected_version is not None and before.version != expected_version:
            raise ConflictException(
                f"{kind.value}/{record_id} changed (expected v{expected_version}, found v{before.version})",
                resource_id=record_id
            )

        data = before.model_dump()
        data.update(fields)
        data["version"] = (before.version or 0) + 1
        stored = validate_record(kind, data)
        table[record_id] = stored
        logger.debug(f"update {kind.value}/{record_id} v{stored.version}: {sorted(fields)}")

        await self.publish_change(kind, record_id, before, stored)
        return stored.model_copy(deep=True)

    async def delete(self, kind: RecordKind, record_id: str) -> bool:
        kind = RecordKind(kind)
        before = self._tables[kind].pop(record_id, None)
        if before is None:
            return False
        logger.debug(f"delete {kind.value}/{record_id}")
        await self.publish_change(kind, record_id, before, None)
        return True

    async def query_by_membership(self, kind: RecordKind, field: str, user_id: str) -> List[BaseModel]:
        results = []
        for record in self._tables[RecordKind(kind)].values():
            value = getattr(record, field)
            if value == user_id or (isinstance(value, list) and user_id in value):
                results.append(record.model_copy(deep=True))
        return results

    async def list_all(self, kind: RecordKind) -> List[BaseModel]:
        return [record.model_copy(deep=True) for record in self._tables[RecordKind(kind)].values()]
