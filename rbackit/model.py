"""Access-control model: definitions, assertions and the policy rules they hold."""

from __future__ import annotations

import logging
import re
from collections import deque
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

DEFAULT_SEP = ","

_DEFAULT_DOMAIN = ""
_DOMAIN_SEPARATOR = "::"
_SUBJECT_PRIORITY_EFFECT = "subjectPriority(p_eft) || deny"

SECTION_NAMES = {
    "r": "request_definition",
    "p": "policy_definition",
    "g": "role_definition",
    "e": "policy_effect",
    "m": "matchers",
}

REQUIRED_SECTIONS = ("r", "p", "e", "m")

_ESCAPE_RE = re.compile(r"\b((r|p)[0-9]*)\.")
_INT_RE = re.compile(r"[+-]?[0-9]+")


class ModelError(Exception):
    """Raised when a model definition or its policy is malformed."""


class PolicyOp(Enum):
    """Kind of incremental change applied to role links."""

    ADD = "add"
    REMOVE = "remove"


def _escape_assertion(text: str) -> str:
    return _ESCAPE_RE.sub(lambda m: m.group(1) + "_", text)


def _remove_comments(text: str) -> str:
    pos = text.find("#")
    if pos == -1:
        return text
    return text[:pos].strip()


def _rule_key(rule: Sequence[str]) -> str:
    return DEFAULT_SEP.join(rule)


def _atoi(text: str) -> int | None:
    if _INT_RE.fullmatch(text):
        return int(text)
    return None


def _priority_key(text: str) -> tuple[int, int]:
    value = _atoi(text)
    return (0, 0) if value is None else (1, value)


def _name_with_domain(domain: str, name: str) -> str:
    return domain + _DOMAIN_SEPARATOR + name


def _matches(rule: Sequence[str], field_index: int, field_values: Sequence[str]) -> bool:
    return all(
        value == "" or rule[field_index + offset] == value
        for offset, value in enumerate(field_values)
    )


def _parse_config(text: str) -> dict[str, str]:
    """Parse INI-like model text into a mapping keyed by ``section::key``."""
    values: dict[str, str] = {}
    section = "default"
    lines = iter(text.splitlines())
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith(("#", ";")):
            continue
        if line.startswith("[") and line.endswith("]"):
            section = line[1:-1].strip()
            continue
        while line.endswith("\\"):
            line = line[:-1].rstrip()
            following = next(lines, None)
            if following is None:
                break
            line = f"{line} {following.strip()}"
        key, sep, value = line.partition("=")
        if not sep:
            raise ModelError(f"invalid config line: {raw!r}")
        values[f"{section}::{key.strip()}"] = value.strip()
    return values


def _subject_hierarchy(policies: Iterable[Sequence[str]]) -> dict[str, int]:
    levels: dict[str, int] = {}
    children: dict[str, list[str]] = {}
    for policy in policies:
        if len(policy) < 2:
            raise ModelError("policy g expect 2 more params")
        domain = _DEFAULT_DOMAIN if len(policy) == 2 else policy[2]
        child = _name_with_domain(domain, policy[0])
        parent = _name_with_domain(domain, policy[1])
        children.setdefault(parent, []).append(child)
        levels.setdefault(parent, 0)
        levels[child] = 1

    roots = [name for name, level in levels.items() if level == 0]
    for root in roots:
        queue = deque([root])
        level = 0
        while queue:
            for _ in range(len(queue)):
                node = queue.popleft()
                levels[node] = level
                queue.extend(children.get(node, ()))
            level += 1
    return levels


@dataclass
class Assertion:
    """One definition line of a model section, e.g. ``r = sub, obj, act``."""

    key: str = ""
    value: str = ""
    tokens: list[str] = field(default_factory=list)
    policy: list[list[str]] = field(default_factory=list)
    policy_map: dict[str, int] = field(default_factory=dict)
    rm: Any = None
    logger: logging.Logger | None = None
    priority_index: int = -1

    def _role_arity(self) -> int:
        count = self.value.count("_")
        if count < 2:
            raise ModelError('the number of "_" in role definition should be at least 2')
        return count

    def build_incremental_role_links(self, rm: Any, op: PolicyOp, rules: Iterable[Sequence[str]]) -> None:
        """Apply added or removed grouping rules to the role manager."""
        self.rm = rm
        count = self._role_arity()
        for rule in rules:
            if len(rule) < count:
                raise ModelError("grouping policy elements do not meet role definition")
            rule = list(rule[:count])
            if op is PolicyOp.ADD:
                rm.add_link(rule[0], rule[1], *rule[2:])
            elif op is PolicyOp.REMOVE:
                rm.delete_link(rule[0], rule[1], *rule[2:])

    def build_role_links(self, rm: Any) -> None:
        """Load every grouping rule of this assertion into the role manager."""
        self.rm = rm
        count = self._role_arity()
        for rule in self.policy:
            if len(rule) < count:
                raise ModelError("grouping policy elements do not meet role definition")
            rule = rule[:count]
            rm.add_link(rule[0], rule[1], *rule[2:])

    def copy(self) -> Assertion:
        """Return a copy that shares no lists with this assertion."""
        return Assertion(
            key=self.key,
            value=self.value,
            tokens=list(self.tokens),
            policy=[list(rule) for rule in self.policy],
            policy_map=dict(self.policy_map),
            logger=self.logger,
            priority_index=self.priority_index,
        )


class Model(dict):
    """The whole access-control model: section name to key to assertion."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        super().__init__()
        self._logger = logger or logging.getLogger("rbackit")

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @logger.setter
    def logger(self, logger: logging.Logger) -> None:
        self._logger = logger
        for assertions in self.values():
            for assertion in assertions.values():
                assertion.logger = logger

    @classmethod
    def from_file(cls, path: str | Path) -> Model:
        """Create a model from a model configuration file."""
        model = cls()
        model.load_model(path)
        return model

    @classmethod
    def from_text(cls, text: str) -> Model:
        """Create a model from model configuration text."""
        model = cls()
        model.load_model_from_text(text)
        return model

    def add_def(self, sec: str, key: str, value: str) -> bool:
        """Add an assertion; return False when the value is empty."""
        if not value:
            return False
        assertion = Assertion(key=key, value=value, logger=self._logger)
        if sec in ("r", "p"):
            assertion.tokens = [f"{key}_{token.strip()}" for token in value.split(",")]
        else:
            assertion.value = _remove_comments(_escape_assertion(value))
        if sec == "m" and "in" in assertion.value:
            assertion.value = assertion.value.replace("[", "(").replace("]", ")")
        self.setdefault(sec, {})[key] = assertion
        return True

    def load_model(self, path: str | Path) -> None:
        """Load the model from a configuration file."""
        self.load_model_from_text(Path(path).read_text(encoding="utf-8"))

    def load_model_from_text(self, text: str) -> None:
        """Load the model from configuration text."""
        self.load_model_from_config(_parse_config(text))

    def load_model_from_config(self, cfg: Mapping[str, str]) -> None:
        """Load the model from a mapping keyed by ``section_name::key``."""
        for sec, name in SECTION_NAMES.items():
            index = 1
            while True:
                key = sec if index == 1 else f"{sec}{index}"
                if not self.add_def(sec, key, cfg.get(f"{name}::{key}") or ""):
                    break
                index += 1
        missing = [SECTION_NAMES[sec] for sec in REQUIRED_SECTIONS if not self.has_section(sec)]
        if missing:
            raise ModelError(f"missing required sections: {','.join(missing)}")

    def has_section(self, sec: str) -> bool:
        return sec in self

    def print_model(self) -> None:
        """Log every assertion of the model."""
        if not self._logger.isEnabledFor(logging.INFO):
            return
        info = [
            [sec, key, assertion.value]
            for sec, assertions in self.items()
            for key, assertion in assertions.items()
        ]
        self._logger.info("Model: %s", info)

    def sort_policies_by_subject_hierarchy(self) -> None:
        """Order policies so that deeper subjects in the role tree come first."""
        if self["e"]["e"].value != _SUBJECT_PRIORITY_EFFECT:
            return
        sub_index = 0
        for ptype, assertion in self.get("p", {}).items():
            dom_token = f"{ptype}_dom"
            domain_index = assertion.tokens.index(dom_token) if dom_token in assertion.tokens else None
            hierarchy = _subject_hierarchy(self["g"]["g"].policy)

            def level(rule: Sequence[str]) -> int:
                domain = _DEFAULT_DOMAIN if domain_index is None else rule[domain_index]
                return hierarchy.get(_name_with_domain(domain, rule[sub_index]), 0)

            assertion.policy.sort(key=level, reverse=True)
            for index, rule in enumerate(assertion.policy):
                assertion.policy_map[_rule_key(rule)] = index

    def sort_policies_by_priority(self) -> None:
        """Order policies by their integer priority field, if the definition has one."""
        for ptype, assertion in self.get("p", {}).items():
            token = f"{ptype}_priority"
            if token in assertion.tokens:
                assertion.priority_index = assertion.tokens.index(token)
            if assertion.priority_index == -1:
                continue
            position = assertion.priority_index
            assertion.policy.sort(key=lambda rule: _priority_key(rule[position]))
            for index, rule in enumerate(assertion.policy):
                assertion.policy_map[_rule_key(rule)] = index

    def to_text(self) -> str:
        """Render the model back to configuration text."""
        patterns: dict[str, str] = {}
        for sec in ("r", "p"):
            for token in self[sec][sec].tokens:
                patterns[token] = re.sub("^r_", "r.", re.sub("^p_", "p.", token))
        if "p_eft" in self["e"]["e"].value:
            patterns["p_eft"] = "p.eft"

        def section_lines(sec: str) -> Iterator[str]:
            for key, assertion in self[sec].items():
                value = assertion.value
                for pattern, replacement in patterns.items():
                    value = value.replace(pattern, replacement)
                yield f"{key} = {value}\n"

        parts = ["[request_definition]\n", *section_lines("r")]
        parts += ["[policy_definition]\n", *section_lines("p")]
        if "g" in self:
            parts.append("[role_definition]\n")
            parts += [f"{key} = {assertion.value}\n" for key, assertion in self["g"].items()]
        parts += ["[policy_effect]\n", *section_lines("e")]
        parts += ["[matchers]\n", *section_lines("m")]
        return "".join(parts)

    def copy(self) -> Model:
        """Return a deep copy of the model without role managers."""
        new_model = Model(self._logger)
        for sec, assertions in self.items():
            new_model[sec] = {key: assertion.copy() for key, assertion in assertions.items()}
        new_model.logger = self._logger
        return new_model

    def build_incremental_role_links(
        self, rm_map: Mapping[str, Any], op: PolicyOp, sec: str, ptype: str, rules: Iterable[Sequence[str]]
    ) -> None:
        """Apply a change to the role manager of a grouping assertion."""
        if sec == "g":
            self[sec][ptype].build_incremental_role_links(rm_map[ptype], op, rules)

    def build_role_links(self, rm_map: Mapping[str, Any]) -> None:
        """Load all grouping rules into their role managers."""
        self.print_policy()
        for ptype, assertion in self.get("g", {}).items():
            assertion.build_role_links(rm_map[ptype])

    def print_policy(self) -> None:
        """Log all policy and grouping rules."""
        if not self._logger.isEnabledFor(logging.INFO):
            return
        policy: dict[str, list[list[str]]] = {}
        for sec in ("p", "g"):
            for key, assertion in self.get(sec, {}).items():
                policy.setdefault(key, []).extend(assertion.policy)
        self._logger.info("Policy: %s", policy)

    def clear_policy(self) -> None:
        """Remove every policy and grouping rule."""
        for sec in ("p", "g"):
            for assertion in self.get(sec, {}).values():
                assertion.policy = []
                assertion.policy_map = {}

    def get_policy(self, sec: str, ptype: str) -> list[list[str]]:
        return self[sec][ptype].policy

    def get_filtered_policy(self, sec: str, ptype: str, field_index: int, *field_values: str) -> list[list[str]]:
        """Return rules whose fields from ``field_index`` on match; empty values match anything."""
        return [rule for rule in self[sec][ptype].policy if _matches(rule, field_index, field_values)]

    def has_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> bool:
        return _rule_key(rule) in self[sec][ptype].policy_map

    def has_policies(self, sec: str, ptype: str, rules: Iterable[Sequence[str]]) -> bool:
        """Return True if any of the rules is present."""
        return any(self.has_policy(sec, ptype, rule) for rule in rules)

    def add_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> None:
        """Append a rule, keeping priority order when the definition has a priority field."""
        assertion = self[sec][ptype]
        rule = list(rule)
        assertion.policy.append(rule)
        assertion.policy_map[_rule_key(rule)] = len(assertion.policy) - 1

        if sec != "p" or assertion.priority_index < 0:
            return
        insert_priority = _atoi(rule[assertion.priority_index])
        if insert_priority is None:
            return
        i = len(assertion.policy) - 1
        while i > 0:
            previous = _atoi(assertion.policy[i - 1][assertion.priority_index])
            if previous is None or previous <= insert_priority:
                break
            assertion.policy[i] = assertion.policy[i - 1]
            assertion.policy_map[_rule_key(assertion.policy[i])] += 1
            i -= 1
        assertion.policy[i] = rule
        assertion.policy_map[_rule_key(rule)] = i

    def add_policies(self, sec: str, ptype: str, rules: Iterable[Sequence[str]]) -> None:
        self.add_policies_with_affected(sec, ptype, rules)

    def add_policies_with_affected(self, sec: str, ptype: str, rules: Iterable[Sequence[str]]) -> list[list[str]]:
        """Add the rules not yet present and return those that were added."""
        affected = []
        for rule in rules:
            if self.has_policy(sec, ptype, rule):
                continue
            affected.append(list(rule))
            self.add_policy(sec, ptype, rule)
        return affected

    def remove_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> bool:
        """Remove one rule; return False when it was not present."""
        return bool(self.remove_policies_with_effected(sec, ptype, [rule]))

    def update_policy(self, sec: str, ptype: str, old_rule: Sequence[str], new_rule: Sequence[str]) -> bool:
        """Replace a rule in place; return False when the old rule is absent."""
        assertion = self[sec][ptype]
        old_key = _rule_key(old_rule)
        index = assertion.policy_map.get(old_key)
        if index is None:
            return False
        assertion.policy[index] = list(new_rule)
        del assertion.policy_map[old_key]
        assertion.policy_map[_rule_key(new_rule)] = index
        return True

    def update_policies(
        self, sec: str, ptype: str, old_rules: Sequence[Sequence[str]], new_rules: Sequence[Sequence[str]]
    ) -> bool:
        """Replace rules pairwise; if any old rule is absent, undo all and return False."""
        assertion = self[sec][ptype]
        modified: dict[int, int] = {}
        for pair_index, old_rule in enumerate(old_rules):
            old_key = _rule_key(old_rule)
            index = assertion.policy_map.get(old_key)
            if index is None:
                for position, changed in modified.items():
                    assertion.policy[position] = list(old_rules[changed])
                    assertion.policy_map.pop(_rule_key(new_rules[changed]), None)
                    assertion.policy_map[_rule_key(old_rules[changed])] = position
                return False
            new_rule = list(new_rules[pair_index])
            assertion.policy[index] = new_rule
            del assertion.policy_map[old_key]
            assertion.policy_map[_rule_key(new_rule)] = index
            modified[index] = pair_index
        return True

    def remove_policies(self, sec: str, ptype: str, rules: Iterable[Sequence[str]]) -> bool:
        return bool(self.remove_policies_with_effected(sec, ptype, rules))

    def remove_policies_with_effected(self, sec: str, ptype: str, rules: Iterable[Sequence[str]]) -> list[list[str]]:
        """Remove the present rules and return those that were removed."""
        assertion = self[sec][ptype]
        removed = []
        for rule in rules:
            key = _rule_key(rule)
            index = assertion.policy_map.get(key)
            if index is None:
                continue
            removed.append(list(rule))
            del assertion.policy[index]
            del assertion.policy_map[key]
            for position, remaining in enumerate(assertion.policy[index:], start=index):
                assertion.policy_map[_rule_key(remaining)] = position
        return removed

    def remove_filtered_policy(self, sec: str, ptype: str, field_index: int, *field_values: str) -> list[list[str]]:
        """Remove rules matching the field filter and return them."""
        assertion = self[sec][ptype]
        kept: list[list[str]] = []
        removed: list[list[str]] = []
        for rule in assertion.policy:
            (removed if _matches(rule, field_index, field_values) else kept).append(rule)
        assertion.policy_map = {_rule_key(rule): index for index, rule in enumerate(kept)}
        if removed:
            assertion.policy = kept
        return removed

    def get_values_for_field_in_policy(self, sec: str, ptype: str, field_index: int) -> list[str]:
        """Distinct values of one field across a policy, in first-seen order."""
        return list(dict.fromkeys(rule[field_index] for rule in self[sec][ptype].policy))

    def get_values_for_field_in_policy_all_types(self, sec: str, field_index: int) -> list[str]:
        """Distinct values of one field across every policy type of a section."""
        return list(
            dict.fromkeys(
                value
                for ptype in self.get(sec, {})
                for value in self.get_values_for_field_in_policy(sec, ptype, field_index)
            )
        )