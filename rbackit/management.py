"""Policy management: querying and changing policy and grouping rules."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from .file_adapter import FileAdapter
from .model import Model, PolicyOp
from .persist import (
    Adapter,
    BatchAdapter,
    FilteredAdapter,
    UpdatableAdapter,
    Watcher,
    WatcherEx,
    WatcherUpdatable,
)
from .role_manager import DefaultRoleManager, RoleManager


def _as_rule(params: Sequence[Any]) -> list[str]:
    """Accept either a single list of fields or the fields themselves."""
    if len(params) == 1 and isinstance(params[0], (list, tuple)):
        return list(params[0])
    return list(params)


def _as_rules(rules: Sequence[Sequence[str]]) -> list[list[str]]:
    return [list(rule) for rule in rules]


class PolicyManager:
    """Holds a model with its policy, role managers, adapter and watcher.

    Every change to the policy is written through to the adapter when
    auto-save is on, applied to the role managers for grouping rules, and
    announced to the watcher when one is set.
    """

    def __init__(
        self,
        model: Model | str | Path,
        adapter: Adapter | str | Path | None = None,
        *,
        watcher: Watcher | None = None,
        auto_save: bool = True,
        auto_build_role_links: bool = True,
        auto_notify_watcher: bool = True,
        max_hierarchy_level: int = 10,
    ) -> None:
        self.model = model if isinstance(model, Model) else Model.from_file(model)
        if isinstance(adapter, (str, Path)):
            adapter = FileAdapter(adapter)
        self.adapter: Adapter | None = adapter
        self.watcher = watcher
        self.auto_save = auto_save
        self.auto_build_role_links = auto_build_role_links
        self.auto_notify_watcher = auto_notify_watcher
        self.rm_map: dict[str, RoleManager] = {
            ptype: DefaultRoleManager(max_hierarchy_level) for ptype in self.model.get("g", {})
        }
        if self.adapter is not None:
            self.load_policy()

    @property
    def role_manager(self) -> RoleManager:
        """The role manager of the default grouping type ``g``."""
        return self.rm_map["g"]

    # Loading and saving

    def load_policy(self) -> None:
        """Reload the whole policy from the adapter."""
        if self.adapter is None:
            raise RuntimeError("no adapter is set")
        new_model = self.model.copy()
        new_model.clear_policy()
        self.adapter.load_policy(new_model)
        if "e" in new_model:
            new_model.sort_policies_by_subject_hierarchy()
        new_model.sort_policies_by_priority()
        if self.auto_build_role_links:
            for rm in self.rm_map.values():
                rm.clear()
            new_model.build_role_links(self.rm_map)
        self.model = new_model

    def save_policy(self) -> None:
        """Write the whole policy to the adapter."""
        if self.adapter is None:
            raise RuntimeError("no adapter is set")
        if isinstance(self.adapter, FilteredAdapter) and self.adapter.is_filtered():
            raise RuntimeError("cannot save a filtered policy")
        self.adapter.save_policy(self.model)
        self._notify(lambda watcher: watcher.update_for_save_policy(self.model))

    def clear_policy(self) -> None:
        """Remove every rule from the in-memory policy."""
        self.model.clear_policy()

    def build_role_links(self) -> None:
        """Rebuild all role managers from the grouping rules."""
        for rm in self.rm_map.values():
            rm.clear()
        self.model.build_role_links(self.rm_map)

    # Internal helpers

    def _persist(self, action: Callable[[Adapter], Any]) -> Any:
        if self.adapter is None or not self.auto_save:
            return None
        try:
            return action(self.adapter)
        except NotImplementedError:
            return None

    def _updatable_adapter(self) -> UpdatableAdapter | None:
        if self.adapter is None or not self.auto_save:
            return None
        if not isinstance(self.adapter, UpdatableAdapter):
            raise TypeError("adapter does not support updating rules")
        return self.adapter

    def _notify(self, notify_ex: Callable[[Any], None]) -> None:
        if self.watcher is None or not self.auto_notify_watcher:
            return
        if isinstance(self.watcher, WatcherEx):
            notify_ex(self.watcher)
        else:
            self.watcher.update()

    def _notify_update(self, notify_updatable: Callable[[Any], None]) -> None:
        if self.watcher is None or not self.auto_notify_watcher:
            return
        if isinstance(self.watcher, WatcherUpdatable):
            notify_updatable(self.watcher)
        else:
            self.watcher.update()

    def _links(self, sec: str, ptype: str, op: PolicyOp, rules: list[list[str]]) -> None:
        if sec == "g" and rules:
            self.model.build_incremental_role_links(self.rm_map, op, sec, ptype, rules)

    def _add_policy(self, sec: str, ptype: str, rule: list[str]) -> bool:
        if self.model.has_policy(sec, ptype, rule):
            return False
        self._persist(lambda adapter: adapter.add_policy(sec, ptype, rule))
        self.model.add_policy(sec, ptype, rule)
        self._links(sec, ptype, PolicyOp.ADD, [rule])
        self._notify(lambda watcher: watcher.update_for_add_policy(sec, ptype, *rule))
        return True

    def _add_policies(self, sec: str, ptype: str, rules: list[list[str]]) -> bool:
        if self.model.has_policies(sec, ptype, rules):
            return False

        def save(adapter: Adapter) -> None:
            if isinstance(adapter, BatchAdapter):
                adapter.add_policies(sec, ptype, rules)
            else:
                for rule in rules:
                    adapter.add_policy(sec, ptype, rule)

        self._persist(save)
        added = self.model.add_policies_with_affected(sec, ptype, rules)
        self._links(sec, ptype, PolicyOp.ADD, added)
        self._notify(lambda watcher: watcher.update_for_add_policies(sec, ptype, *rules))
        return True

    def _remove_policy(self, sec: str, ptype: str, rule: list[str]) -> bool:
        if not self.model.has_policy(sec, ptype, rule):
            return False
        self._persist(lambda adapter: adapter.remove_policy(sec, ptype, rule))
        if not self.model.remove_policy(sec, ptype, rule):
            return False
        self._links(sec, ptype, PolicyOp.REMOVE, [rule])
        self._notify(lambda watcher: watcher.update_for_remove_policy(sec, ptype, *rule))
        return True

    def _remove_policies(self, sec: str, ptype: str, rules: list[list[str]]) -> bool:
        if not self.model.has_policies(sec, ptype, rules):
            return False

        def save(adapter: Adapter) -> None:
            if isinstance(adapter, BatchAdapter):
                adapter.remove_policies(sec, ptype, rules)
            else:
                for rule in rules:
                    adapter.remove_policy(sec, ptype, rule)

        self._persist(save)
        removed = self.model.remove_policies_with_effected(sec, ptype, rules)
        if not removed:
            return False
        self._links(sec, ptype, PolicyOp.REMOVE, removed)
        self._notify(lambda watcher: watcher.update_for_remove_policies(sec, ptype, *rules))
        return True

    def _remove_filtered_policy(self, sec: str, ptype: str, field_index: int, field_values: tuple[str, ...]) -> bool:
        if not field_values:
            raise ValueError("invalid fieldValues parameter")
        self._persist(lambda adapter: adapter.remove_filtered_policy(sec, ptype, field_index, *field_values))
        removed = self.model.remove_filtered_policy(sec, ptype, field_index, *field_values)
        if not removed:
            return False
        self._links(sec, ptype, PolicyOp.REMOVE, removed)
        self._notify(
            lambda watcher: watcher.update_for_remove_filtered_policy(sec, ptype, field_index, *field_values)
        )
        return True

    def _update_policy(self, sec: str, ptype: str, old_rule: list[str], new_rule: list[str]) -> bool:
        adapter = self._updatable_adapter()
        if adapter is not None:
            self._persist(lambda _: adapter.update_policy(sec, ptype, old_rule, new_rule))
        if not self.model.update_policy(sec, ptype, old_rule, new_rule):
            return False
        self._links(sec, ptype, PolicyOp.REMOVE, [old_rule])
        self._links(sec, ptype, PolicyOp.ADD, [new_rule])
        self._notify_update(lambda watcher: watcher.update_for_update_policy(old_rule, new_rule))
        return True

    def _update_policies(self, sec: str, ptype: str, old_rules: list[list[str]], new_rules: list[list[str]]) -> bool:
        adapter = self._updatable_adapter()
        if adapter is not None:
            self._persist(lambda _: adapter.update_policies(sec, ptype, old_rules, new_rules))
        if not self.model.update_policies(sec, ptype, old_rules, new_rules):
            return False
        self._links(sec, ptype, PolicyOp.REMOVE, old_rules)
        self._links(sec, ptype, PolicyOp.ADD, new_rules)
        self._notify_update(lambda watcher: watcher.update_for_update_policies(old_rules, new_rules))
        return True

    def _update_filtered_policies(
        self, sec: str, ptype: str, new_rules: list[list[str]], field_index: int, field_values: tuple[str, ...]
    ) -> bool:
        old_rules = None
        adapter = self._updatable_adapter()
        if adapter is not None:
            old_rules = self._persist(
                lambda _: adapter.update_filtered_policies(sec, ptype, new_rules, field_index, *field_values)
            )
        if old_rules is None:
            old_rules = _as_rules(self.model.get_filtered_policy(sec, ptype, field_index, *field_values))
        removed = self.model.remove_policies_with_effected(sec, ptype, _as_rules(old_rules))
        added = self.model.add_policies_with_affected(sec, ptype, new_rules)
        if not removed and not added:
            return False
        self._links(sec, ptype, PolicyOp.REMOVE, removed)
        self._links(sec, ptype, PolicyOp.ADD, added)
        if self.watcher is not None and self.auto_notify_watcher:
            self.watcher.update()
        return True

    # Listing

    def get_all_subjects(self) -> list[str]:
        return self.model.get_values_for_field_in_policy_all_types("p", 0)

    def get_all_named_subjects(self, ptype: str) -> list[str]:
        return self.model.get_values_for_field_in_policy("p", ptype, 0)

    def get_all_objects(self) -> list[str]:
        return self.model.get_values_for_field_in_policy_all_types("p", 1)

    def get_all_named_objects(self, ptype: str) -> list[str]:
        return self.model.get_values_for_field_in_policy("p", ptype, 1)

    def get_all_actions(self) -> list[str]:
        return self.model.get_values_for_field_in_policy_all_types("p", 2)

    def get_all_named_actions(self, ptype: str) -> list[str]:
        return self.model.get_values_for_field_in_policy("p", ptype, 2)

    def get_all_roles(self) -> list[str]:
        return self.model.get_values_for_field_in_policy_all_types("g", 1)

    def get_all_named_roles(self, ptype: str) -> list[str]:
        return self.model.get_values_for_field_in_policy("g", ptype, 1)

    # Policy rules

    def get_policy(self) -> list[list[str]]:
        return self.get_named_policy("p")

    def get_filtered_policy(self, field_index: int, *field_values: str) -> list[list[str]]:
        return self.get_filtered_named_policy("p", field_index, *field_values)

    def get_named_policy(self, ptype: str) -> list[list[str]]:
        return self.model.get_policy("p", ptype)

    def get_filtered_named_policy(self, ptype: str, field_index: int, *field_values: str) -> list[list[str]]:
        return self.model.get_filtered_policy("p", ptype, field_index, *field_values)

    def get_grouping_policy(self) -> list[list[str]]:
        return self.get_named_grouping_policy("g")

    def get_filtered_grouping_policy(self, field_index: int, *field_values: str) -> list[list[str]]:
        return self.get_filtered_named_grouping_policy("g", field_index, *field_values)

    def get_named_grouping_policy(self, ptype: str) -> list[list[str]]:
        return self.model.get_policy("g", ptype)

    def get_filtered_named_grouping_policy(self, ptype: str, field_index: int, *field_values: str) -> list[list[str]]:
        return self.model.get_filtered_policy("g", ptype, field_index, *field_values)

    def has_policy(self, *params: Any) -> bool:
        return self.has_named_policy("p", *params)

    def has_named_policy(self, ptype: str, *params: Any) -> bool:
        return self.model.has_policy("p", ptype, _as_rule(params))

    def add_policy(self, *params: Any) -> bool:
        """Add a rule; return False when it already exists."""
        return self.add_named_policy("p", *params)

    def add_policies(self, rules: Sequence[Sequence[str]]) -> bool:
        """Add rules; return False, adding none, when any already exists."""
        return self.add_named_policies("p", rules)

    def add_named_policy(self, ptype: str, *params: Any) -> bool:
        return self._add_policy("p", ptype, _as_rule(params))

    def add_named_policies(self, ptype: str, rules: Sequence[Sequence[str]]) -> bool:
        return self._add_policies("p", ptype, _as_rules(rules))

    def remove_policy(self, *params: Any) -> bool:
        return self.remove_named_policy("p", *params)

    def update_policy(self, old_policy: Sequence[str], new_policy: Sequence[str]) -> bool:
        return self.update_named_policy("p", old_policy, new_policy)

    def update_named_policy(self, ptype: str, old_rule: Sequence[str], new_rule: Sequence[str]) -> bool:
        return self._update_policy("p", ptype, list(old_rule), list(new_rule))

    def update_policies(self, old_rules: Sequence[Sequence[str]], new_rules: Sequence[Sequence[str]]) -> bool:
        return self.update_named_policies("p", old_rules, new_rules)

    def update_named_policies(
        self, ptype: str, old_rules: Sequence[Sequence[str]], new_rules: Sequence[Sequence[str]]
    ) -> bool:
        return self._update_policies("p", ptype, _as_rules(old_rules), _as_rules(new_rules))

    def update_filtered_policies(
        self, new_policies: Sequence[Sequence[str]], field_index: int, *field_values: str
    ) -> bool:
        return self.update_filtered_named_policies("p", new_policies, field_index, *field_values)

    def update_filtered_named_policies(
        self, ptype: str, new_policies: Sequence[Sequence[str]], field_index: int, *field_values: str
    ) -> bool:
        """Replace the rules matching the filter with the new rules."""
        return self._update_filtered_policies("p", ptype, _as_rules(new_policies), field_index, field_values)

    def remove_policies(self, rules: Sequence[Sequence[str]]) -> bool:
        return self.remove_named_policies("p", rules)

    def remove_filtered_policy(self, field_index: int, *field_values: str) -> bool:
        return self.remove_filtered_named_policy("p", field_index, *field_values)

    def remove_named_policy(self, ptype: str, *params: Any) -> bool:
        return self._remove_policy("p", ptype, _as_rule(params))

    def remove_named_policies(self, ptype: str, rules: Sequence[Sequence[str]]) -> bool:
        return self._remove_policies("p", ptype, _as_rules(rules))

    def remove_filtered_named_policy(self, ptype: str, field_index: int, *field_values: str) -> bool:
        return self._remove_filtered_policy("p", ptype, field_index, field_values)

    # Grouping rules

    def has_grouping_policy(self, *params: Any) -> bool:
        return self.has_named_grouping_policy("g", *params)

    def has_named_grouping_policy(self, ptype: str, *params: Any) -> bool:
        return self.model.has_policy("g", ptype, _as_rule(params))

    def add_grouping_policy(self, *params: Any) -> bool:
        return self.add_named_grouping_policy("g", *params)

    def add_grouping_policies(self, rules: Sequence[Sequence[str]]) -> bool:
        return self.add_named_grouping_policies("g", rules)

    def add_named_grouping_policy(self, ptype: str, *params: Any) -> bool:
        return self._add_policy("g", ptype, _as_rule(params))

    def add_named_grouping_policies(self, ptype: str, rules: Sequence[Sequence[str]]) -> bool:
        return self._add_policies("g", ptype, _as_rules(rules))

    def remove_grouping_policy(self, *params: Any) -> bool:
        return self.remove_named_grouping_policy("g", *params)

    def remove_grouping_policies(self, rules: Sequence[Sequence[str]]) -> bool:
        return self.remove_named_grouping_policies("g", rules)

    def remove_filtered_grouping_policy(self, field_index: int, *field_values: str) -> bool:
        return self.remove_filtered_named_grouping_policy("g", field_index, *field_values)

    def remove_named_grouping_policy(self, ptype: str, *params: Any) -> bool:
        return self._remove_policy("g", ptype, _as_rule(params))

    def remove_named_grouping_policies(self, ptype: str, rules: Sequence[Sequence[str]]) -> bool:
        return self._remove_policies("g", ptype, _as_rules(rules))

    def update_grouping_policy(self, old_rule: Sequence[str], new_rule: Sequence[str]) -> bool:
        return self.update_named_grouping_policy("g", old_rule, new_rule)

    def update_grouping_policies(self, old_rules: Sequence[Sequence[str]], new_rules: Sequence[Sequence[str]]) -> bool:
        return self.update_named_grouping_policies("g", old_rules, new_rules)

    def update_named_grouping_policy(self, ptype: str, old_rule: Sequence[str], new_rule: Sequence[str]) -> bool:
        return self._update_policy("g", ptype, list(old_rule), list(new_rule))

    def update_named_grouping_policies(
        self, ptype: str, old_rules: Sequence[Sequence[str]], new_rules: Sequence[Sequence[str]]
    ) -> bool:
        return self._update_policies("g", ptype, _as_rules(old_rules), _as_rules(new_rules))

    def remove_filtered_named_grouping_policy(self, ptype: str, field_index: int, *field_values: str) -> bool:
        return self._remove_filtered_policy("g", ptype, field_index, field_values)