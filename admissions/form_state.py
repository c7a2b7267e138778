from __future__ import annotations

import copy
import datetime as _dt
from typing import Any, Callable, Dict, List, Optional

from . import fields
from .definition import FormDefinition
from .errors import RecordLocked
from .migrations import deep_merge
from .persistence import DraftPersistence
from .schemas import FieldError, StepDefinition
from .validation import StepValidator


def utc_now_iso() -> str:
    return _dt.datetime.now(tz=_dt.timezone.utc).isoformat()


class FormStateStore:
    """Current draft, derived step completion and the active step.

    All mutation goes through `update`/`update_field`; there is one mutator per
    context, so no locking. When `persistence` is given every update autosaves.
    """

    def __init__(
        self,
        definition: FormDefinition,
        record: Optional[Dict[str, Any]] = None,
        persistence: Optional[DraftPersistence] = None,
        clock: Optional[Callable[[], str]] = None,
    ) -> None:
        self.definition = definition
        self.validator = StepValidator(definition)
        self.persistence = persistence
        self.clock = clock or utc_now_iso
        self.errors: List[FieldError] = []
        self.record = copy.deepcopy(record) if record is not None else definition.default_record()
        self._recompute()

    @classmethod
    def restore(cls, definition: FormDefinition, persistence: DraftPersistence, **kwargs) -> "FormStateStore":
        """Open the stored draft, or a fresh one when none (or a corrupt one) exists."""
        return cls(definition, record=persistence.load(), persistence=persistence, **kwargs)

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.record["metadata"]

    @property
    def current_step_id(self) -> int:
        return int(self.metadata["currentStep"])

    @property
    def current_step(self) -> Optional[StepDefinition]:
        return self.definition.step(self.current_step_id)

    @property
    def total_steps(self) -> int:
        return int(self.metadata["totalSteps"])

    @property
    def completed_steps(self) -> List[int]:
        return list(self.metadata["completedSteps"])

    @property
    def is_first_step(self) -> bool:
        return self.current_step_id == 1

    @property
    def is_last_step(self) -> bool:
        return self.current_step_id == self.total_steps

    @property
    def is_submitted(self) -> bool:
        return self.metadata.get("status", "draft") != "draft"

    def _recompute(self) -> None:
        self.metadata["completedSteps"] = self.validator.completed_step_ids(self.record)

    def _autosave(self) -> None:
        if self.persistence is not None:
            self.persistence.save(self.record)

    def update(self, section: str, patch_or_updater: Any) -> None:
        """Replace a section, or transform it when given a callable of the old value."""
        if section == "metadata":
            raise ValueError("metadata is maintained by the store")
        if self.is_submitted:
            raise RecordLocked(f"application is {self.metadata['status']}; edits are closed")
        previous = copy.deepcopy(self.record.get(section))
        value = patch_or_updater(previous) if callable(patch_or_updater) else patch_or_updater
        self.record[section] = copy.deepcopy(value)
        self.metadata["lastSaved"] = self.clock()
        # Every step, not only the edited one: fields can feed several steps
        self._recompute()
        self._autosave()

    def update_field(self, path: str, value: Any) -> None:
        section, _, rest = path.partition(".")
        if not rest:
            self.update(section, value)
            return
        self.update(section, lambda prev: fields.set_path(prev if isinstance(prev, dict) else {}, rest, value))

    def replace(self, record: Optional[Dict[str, Any]]) -> bool:
        """Adopt a record published by another context unless ours was edited more recently.

        None means the other context cleared its draft. Sections or metadata
        missing from the incoming record fall back to the defaults.
        """
        record = deep_merge(self.definition.default_record(), record)
        incoming = (record.get("metadata") or {}).get("lastSaved") or ""
        mine = self.metadata.get("lastSaved") or ""
        if mine and incoming and incoming < mine:
            return False
        self.record = record
        self._recompute()
        self.errors = []
        return True

    def go_to_step(self, n: int) -> None:
        if 1 <= n <= self.total_steps:
            self.metadata["currentStep"] = n

    def next(self) -> bool:
        step = self.current_step
        if step is not None and not self.validator.is_step_complete(step, self.record):
            self.errors = self.validator.errors_for(step, self.record)
            return False
        self.go_to_step(min(self.current_step_id + 1, self.total_steps))
        self.errors = []
        return True

    def previous(self) -> None:
        self.go_to_step(self.current_step_id - 1)
        self.errors = []

    def progress_percent(self) -> int:
        done = len(self.metadata["completedSteps"])
        # Half-up rounding; Python's round() is banker's rounding
        return int((200 * done + self.total_steps) // (2 * self.total_steps))

    def save(self) -> None:
        self.metadata["lastSaved"] = self.clock()
        self._autosave()

    def clear(self) -> None:
        self.record = self.definition.default_record()
        self.errors = []
        self._recompute()
        if self.persistence is not None:
            self.persistence.clear()
