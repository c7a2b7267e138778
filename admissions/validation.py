from __future__ import annotations

from typing import Any, Dict, List, Mapping

from . import fields
from .definition import FormDefinition
from .schemas import FieldError, StepDefinition


class StepValidator:
    """Decides step completion from the declarative step -> field-path config."""

    def __init__(self, definition: FormDefinition) -> None:
        self.definition = definition

    def is_present(self, path: str, value: Any) -> bool:
        if self.definition.is_attachment(path):
            # Uploaded-document marker object, not merely some string
            return isinstance(value, Mapping)
        if path in self.definition.min_items:
            return isinstance(value, (list, tuple)) and len(value) >= self.definition.min_items[path]
        if value is None:
            return False
        if isinstance(value, str):
            return value.strip() != ""
        if isinstance(value, (list, tuple, dict, set)):
            return len(value) > 0
        return bool(value)

    def is_step_complete(self, step: StepDefinition, record: Mapping[str, Any]) -> bool:
        if not step.is_required:
            return True
        return all(self.is_present(p, fields.get(record, p)) for p in step.validation_fields)

    def errors_for(self, step: StepDefinition, record: Mapping[str, Any]) -> List[FieldError]:
        if not step.is_required:
            return []
        errors: List[FieldError] = []
        for path in step.validation_fields:
            if self.is_present(path, fields.get(record, path)):
                continue
            label = self.definition.label_for(path)
            if path in self.definition.min_items:
                message = f"At least {self.definition.min_items[path]} {label} are required"
            else:
                message = f"{label} is required"
            errors.append(FieldError(field=path, message=message))
        return errors

    def completed_step_ids(self, record: Mapping[str, Any]) -> List[int]:
        return [s.id for s in self.definition.steps if self.is_step_complete(s, record)]

    def incomplete_steps(self, record: Mapping[str, Any], required_only: bool = True) -> List[StepDefinition]:
        steps = self.definition.required_steps() if required_only else self.definition.steps
        return [s for s in steps if not self.is_step_complete(s, record)]

    def errors_by_step(self, record: Mapping[str, Any]) -> Dict[int, List[FieldError]]:
        out: Dict[int, List[FieldError]] = {}
        for step in self.definition.steps:
            errs = self.errors_for(step, record)
            if errs:
                out[step.id] = errs
        return out
