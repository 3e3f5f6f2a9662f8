"""Adapters that keep policy rules in a comma separated text file."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .model import Model
from .persist import BatchAdapter, FilteredAdapter, UpdatableAdapter, load_policy_line

_EMPTY_PATH = "invalid file path, file path cannot be empty"


class AutoSaveUnsupportedError(NotImplementedError):
    """Raised when a single-rule change is asked of the file adapter."""

    def __init__(self, operation: str, ptype: str) -> None:
        super().__init__(
            f"{operation} for {ptype!r}: auto-save is not supported by the file adapter"
        )
        self.operation = operation
        self.ptype = ptype


class FileAdapter(UpdatableAdapter, BatchAdapter):
    """Loads the whole policy from a file and saves it back.

    Changing single rules in the file (auto-save) is not supported.
    """

    def __init__(self, file_path: str | Path) -> None:
        self.file_path = str(file_path)

    def _check_path(self) -> None:
        if not self.file_path:
            raise ValueError(_EMPTY_PATH)

    def _load_lines(self, model: Model, skip: Callable[[str], bool]) -> None:
        with open(self.file_path, encoding="utf-8") as handle:
            for raw in handle:
                line = raw.strip()
                if skip(line):
                    continue
                load_policy_line(line, model)

    def load_policy(self, model: Model) -> None:
        """Load every rule in the file into the model."""
        self._check_path()
        self._load_lines(model, lambda line: False)

    def save_policy(self, model: Model) -> None:
        """Write every policy and grouping rule of the model to the file."""
        self._check_path()
        lines = [
            f"{ptype}, {', '.join(rule)}"
            for sec in ("p", "g")
            for ptype, assertion in model.get(sec, {}).items()
            for rule in assertion.policy
        ]
        Path(self.file_path).write_text("\n".join(lines).rstrip("\n"), encoding="utf-8")

    def add_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> None:
        raise AutoSaveUnsupportedError("add_policy", ptype)

    def add_policies(self, sec: str, ptype: str, rules: Sequence[Sequence[str]]) -> None:
        raise AutoSaveUnsupportedError("add_policies", ptype)

    def remove_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> None:
        raise AutoSaveUnsupportedError("remove_policy", ptype)

    def remove_policies(self, sec: str, ptype: str, rules: Sequence[Sequence[str]]) -> None:
        raise AutoSaveUnsupportedError("remove_policies", ptype)

    def remove_filtered_policy(self, sec: str, ptype: str, field_index: int, *field_values: str) -> None:
        raise AutoSaveUnsupportedError("remove_filtered_policy", ptype)

    def update_policy(self, sec: str, ptype: str, old_rule: Sequence[str], new_rule: Sequence[str]) -> None:
        raise AutoSaveUnsupportedError("update_policy", ptype)

    def update_policies(
        self, sec: str, ptype: str, old_rules: Sequence[Sequence[str]], new_rules: Sequence[Sequence[str]]
    ) -> None:
        raise AutoSaveUnsupportedError("update_policies", ptype)

    def update_filtered_policies(
        self, sec: str, ptype: str, new_policies: Sequence[Sequence[str]], field_index: int, *field_values: str
    ) -> list[list[str]]:
        raise AutoSaveUnsupportedError("update_filtered_policies", ptype)


@dataclass
class Filter:
    """Field values a rule must have to be loaded; empty values match anything."""

    p: list[str] = field(default_factory=list)
    g: list[str] = field(default_factory=list)
    g1: list[str] = field(default_factory=list)
    g2: list[str] = field(default_factory=list)
    g3: list[str] = field(default_factory=list)
    g4: list[str] = field(default_factory=list)
    g5: list[str] = field(default_factory=list)

    def values_for(self, ptype: str) -> list[str]:
        if ptype in ("p", "g", "g1", "g2", "g3", "g4", "g5"):
            return getattr(self, ptype)
        return []


def _filter_words(line: list[str], values: list[str]) -> bool:
    if len(line) < len(values) + 1:
        return True
    return any(
        value and value.strip() != line[offset + 1].strip()
        for offset, value in enumerate(values)
    )


def _filter_line(line: str, rule_filter: Filter | None) -> bool:
    """Return True when the line should be skipped."""
    if rule_filter is None:
        return False
    parts = line.split(",")
    return _filter_words(parts, rule_filter.values_for(parts[0].strip()))


class FilteredFileAdapter(FileAdapter, FilteredAdapter):
    """A file adapter that can load only the rules matching a Filter."""

    def __init__(self, file_path: str | Path) -> None:
        super().__init__(file_path)
        self._filtered = True

    def load_policy(self, model: Model) -> None:
        """Load every rule and mark the policy as unfiltered."""
        self._filtered = False
        super().load_policy(model)

    def load_filtered_policy(self, model: Model, filter: Any) -> None:
        """Load only the rules matching the filter; None loads everything."""
        if filter is None:
            self.load_policy(model)
            return
        self._check_path()
        if not isinstance(filter, Filter):
            raise TypeError("invalid filter type")
        self._load_lines(model, lambda line: _filter_line(line, filter))
        self._filtered = True

    def is_filtered(self) -> bool:
        return self._filtered

    def save_policy(self, model: Model) -> None:
        """Save the policy; refused while a filtered policy is loaded."""
        if self._filtered:
            raise RuntimeError("cannot save a filtered policy")
        super().save_policy(model)