"""Storage adapter, dispatcher and watcher interfaces, plus policy line loading."""

from __future__ import annotations

import csv
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any

from .model import Model


def load_policy_line(line: str, model: Model) -> None:
    """Parse one comma separated text line and add it to the model as a rule.

    Empty lines and lines starting with ``#`` are ignored, as are lines that
    cannot be parsed.
    """
    if not line or line.startswith("#"):
        return
    try:
        tokens = next(csv.reader([line], delimiter=",", skipinitialspace=True), None)
    except csv.Error:
        return
    if not tokens:
        return
    load_policy_array(tokens, model)


def load_policy_array(rule: Sequence[str], model: Model) -> None:
    """Add a rule of the form ``[ptype, field, ...]`` unless it is already present."""
    key = rule[0]
    sec = key[:1]
    values = list(rule[1:])
    if model.has_policy(sec, key, values):
        return
    model.add_policy(sec, key, values)


class Adapter(ABC):
    """Loads and saves policy rules from and to a storage."""

    @abstractmethod
    def load_policy(self, model: Model) -> None:
        """Load all policy rules from the storage into the model."""

    @abstractmethod
    def save_policy(self, model: Model) -> None:
        """Save all policy rules of the model to the storage."""

    @abstractmethod
    def add_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> None:
        """Add one rule to the storage (auto-save)."""

    @abstractmethod
    def remove_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> None:
        """Remove one rule from the storage (auto-save)."""

    @abstractmethod
    def remove_filtered_policy(self, sec: str, ptype: str, field_index: int, *field_values: str) -> None:
        """Remove the rules that match the field filter from the storage (auto-save)."""


class FilteredAdapter(Adapter):
    """An adapter that can load only the rules matching a filter."""

    @abstractmethod
    def load_filtered_policy(self, model: Model, filter: Any) -> None:
        """Load only the rules that match the filter."""

    @abstractmethod
    def is_filtered(self) -> bool:
        """Whether the loaded policy has been filtered."""


class BatchAdapter(Adapter):
    """An adapter that can add and remove several rules at once."""

    @abstractmethod
    def add_policies(self, sec: str, ptype: str, rules: Sequence[Sequence[str]]) -> None:
        """Add rules to the storage (auto-save)."""

    @abstractmethod
    def remove_policies(self, sec: str, ptype: str, rules: Sequence[Sequence[str]]) -> None:
        """Remove rules from the storage (auto-save)."""


class UpdatableAdapter(Adapter):
    """An adapter that can update rules in place."""

    @abstractmethod
    def update_policy(self, sec: str, ptype: str, old_rule: Sequence[str], new_rule: Sequence[str]) -> None:
        """Replace one rule in the storage."""

    @abstractmethod
    def update_policies(
        self, sec: str, ptype: str, old_rules: Sequence[Sequence[str]], new_rules: Sequence[Sequence[str]]
    ) -> None:
        """Replace several rules in the storage."""

    @abstractmethod
    def update_filtered_policies(
        self, sec: str, ptype: str, new_policies: Sequence[Sequence[str]], field_index: int, *field_values: str
    ) -> list[list[str]]:
        """Delete the rules matching the filter, add the new ones and return the deleted ones."""


class Dispatcher(ABC):
    """Propagates policy changes to every instance."""

    @abstractmethod
    def add_policies(self, sec: str, ptype: str, rules: Sequence[Sequence[str]]) -> None:
        """Add rules in all instances."""

    @abstractmethod
    def remove_policies(self, sec: str, ptype: str, rules: Sequence[Sequence[str]]) -> None:
        """Remove rules from all instances."""

    @abstractmethod
    def remove_filtered_policy(self, sec: str, ptype: str, field_index: int, *field_values: str) -> None:
        """Remove the rules matching the filter from all instances."""

    @abstractmethod
    def clear_policy(self) -> None:
        """Clear the policy of all instances."""

    @abstractmethod
    def update_policy(self, sec: str, ptype: str, old_rule: Sequence[str], new_rule: Sequence[str]) -> None:
        """Replace one rule in all instances."""

    @abstractmethod
    def update_policies(
        self, sec: str, ptype: str, old_rules: Sequence[Sequence[str]], new_rules: Sequence[Sequence[str]]
    ) -> None:
        """Replace several rules in all instances."""

    @abstractmethod
    def update_filtered_policies(
        self, sec: str, ptype: str, old_rules: Sequence[Sequence[str]], new_rules: Sequence[Sequence[str]]
    ) -> None:
        """Delete the old rules and add the new ones in all instances."""


class Watcher(ABC):
    """Notifies other instances that the stored policy has changed."""

    @abstractmethod
    def set_update_callback(self, callback: Callable[[str], None]) -> None:
        """Set the function called when another instance changed the policy."""

    @abstractmethod
    def update(self) -> None:
        """Tell other instances to reload their policy."""

    @abstractmethod
    def close(self) -> None:
        """Stop the watcher; the callback is not called any more."""


class WatcherEx(Watcher):
    """A watcher that reports which change was made."""

    @abstractmethod
    def update_for_add_policy(self, sec: str, ptype: str, *params: str) -> None:
        """Report an added rule."""

    @abstractmethod
    def update_for_remove_policy(self, sec: str, ptype: str, *params: str) -> None:
        """Report a removed rule."""

    @abstractmethod
    def update_for_remove_filtered_policy(self, sec: str, ptype: str, field_index: int, *field_values: str) -> None:
        """Report a filtered removal."""

    @abstractmethod
    def update_for_save_policy(self, model: Model) -> None:
        """Report a saved policy."""

    @abstractmethod
    def update_for_add_policies(self, sec: str, ptype: str, *rules: Sequence[str]) -> None:
        """Report added rules."""

    @abstractmethod
    def update_for_remove_policies(self, sec: str, ptype: str, *rules: Sequence[str]) -> None:
        """Report removed rules."""


class WatcherUpdatable(Watcher):
    """A watcher that reports updated rules."""

    @abstractmethod
    def update_for_update_policy(self, old_rule: Sequence[str], new_rule: Sequence[str]) -> None:
        """Report an updated rule."""

    @abstractmethod
    def update_for_update_policies(
        self, old_rules: Sequence[Sequence[str]], new_rules: Sequence[Sequence[str]]
    ) -> None:
        """Report updated rules."""