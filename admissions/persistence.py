from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import orjson

from .broadcast import BroadcastChannel
from .definition import FormDefinition
from .errors import LoadCorrupted
from .migrations import MIGRATIONS, Migration, deep_merge, migrate
from .schemas import RecordMetadata
from .settings import settings
from .storage import LocalStore, dumps


logger = logging.getLogger(__name__)


class DraftPersistence:
    """Keeps the in-progress draft in one local slot and upgrades old shapes on load."""

    def __init__(
        self,
        store: LocalStore,
        definition: FormDefinition,
        key: Optional[str] = None,
        channel: Optional[BroadcastChannel] = None,
        migrations: Optional[Dict[int, Migration]] = None,
    ) -> None:
        self.store = store
        self.definition = definition
        self.key = key or settings.storage.get("draft_key", "applicationFormData")
        self.channel = channel
        self.migrations = MIGRATIONS if migrations is None else migrations

    def save(self, record: Dict[str, Any]) -> None:
        self.store.set_raw(self.key, dumps(record))
        if self.channel is not None:
            self.channel.publish(self.key, record)

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored draft in the current shape, or None.

        Unreadable data is logged as LoadCorrupted and reported as None so the
        caller falls back to defaults.
        """
        try:
            raw = self.store.get_raw(self.key)
            if raw is None:
                return None
            parsed = orjson.loads(raw)
            if not isinstance(parsed, dict):
                raise LoadCorrupted(f"draft under {self.key!r} is {type(parsed).__name__}, expected object")
            return self.upgrade(parsed)
        except (orjson.JSONDecodeError, LoadCorrupted, ValueError, TypeError) as e:
            logger.warning("LoadCorrupted: discarding draft %r: %s", self.key, e)
            return None

    def upgrade(self, stored: Dict[str, Any]) -> Dict[str, Any]:
        migrated, applied = migrate(stored, self.definition.version, self.migrations)
        if applied:
            logger.info("migrated draft %r via %s", self.key, ", ".join(applied))
        record = deep_merge(self.definition.default_record(), migrated)

        total = self.definition.total_steps
        meta = record["metadata"]
        meta["totalSteps"] = total
        # Validates status and types; raises ValueError on garbage
        checked = RecordMetadata.model_validate(meta)
        meta["currentStep"] = min(max(int(checked.current_step), 1), total)
        meta["completedSteps"] = sorted({int(s) for s in checked.completed_steps if 1 <= int(s) <= total})
        return record

    def clear(self) -> None:
        self.store.remove(self.key)
        if self.channel is not None:
            self.channel.publish(self.key, None)
