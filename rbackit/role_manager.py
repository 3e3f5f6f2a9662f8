"""Role managers: role inheritance graphs, optionally split into domains."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable, Iterator

MatchingFunc = Callable[[str, str], bool]

DEFAULT_DOMAIN = ""
_CACHE_SIZE = 100


class DomainParameterError(ValueError):
    """Raised when more than one domain is passed to a role manager."""

    def __init__(self) -> None:
        super().__init__("domain should be 1 parameter")


class _LRUCache:
    """A small least-recently-used cache for matching results."""

    def __init__(self, capacity: int) -> None:
        self._capacity = capacity
        self._data: OrderedDict[str, bool] = OrderedDict()

    def get(self, key: str) -> bool | None:
        if key not in self._data:
            return None
        self._data.move_to_end(key)
        return self._data[key]

    def put(self, key: str, value: bool) -> None:
        self._data[key] = value
        self._data.move_to_end(key)
        if len(self._data) > self._capacity:
            self._data.popitem(last=False)


class _Role:
    """A node of the role graph with its direct links and pattern matches."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.roles: dict[str, _Role] = {}
        self.users: dict[str, _Role] = {}
        self.matched: dict[str, _Role] = {}
        self.matched_by: dict[str, _Role] = {}

    def add_role(self, role: _Role) -> None:
        self.roles[role.name] = role
        role.users[self.name] = self

    def remove_role(self, role: _Role) -> None:
        self.roles.pop(role.name, None)
        role.users.pop(self.name, None)

    def add_match(self, role: _Role) -> None:
        self.matched[role.name] = role
        role.matched_by[self.name] = self

    def remove_match(self, role: _Role) -> None:
        self.matched.pop(role.name, None)
        role.matched_by.pop(self.name, None)

    def remove_matches(self) -> None:
        for role in list(self.matched.values()):
            self.remove_match(role)
        for role in list(self.matched_by.values()):
            role.remove_match(self)

    def iter_roles(self) -> Iterator[tuple[str, _Role]]:
        yield from self.roles.items()
        for role in self.roles.values():
            yield from role.matched.items()
        for role in self.matched_by.values():
            yield from role.roles.items()

    def iter_users(self) -> Iterator[tuple[str, _Role]]:
        yield from self.users.items()
        for user in self.users.values():
            yield from user.matched.items()
        for role in self.matched_by.values():
            yield from role.users.items()

    def get_roles(self) -> list[str]:
        return list(dict.fromkeys(name for name, _ in self.iter_roles()))

    def get_users(self) -> list[str]:
        return [name for name, _ in self.iter_users()]

    def __str__(self) -> str:
        roles = self.get_roles()
        if not roles:
            return ""
        joined = ", ".join(roles)
        if len(roles) != 1:
            joined = f"({joined})"
        return f"{self.name} < {joined}"


class RoleManager(ABC):
    """Operations every role manager provides."""

    @abstractmethod
    def clear(self) -> None:
        """Drop all stored links."""

    @abstractmethod
    def add_link(self, name1: str, name2: str, *domains: str) -> None:
        """Make ``name1`` inherit ``name2``."""

    @abstractmethod
    def delete_link(self, name1: str, name2: str, *domains: str) -> None:
        """Stop ``name1`` inheriting ``name2``."""

    @abstractmethod
    def has_link(self, name1: str, name2: str, *domains: str) -> bool:
        """Whether ``name1`` inherits ``name2``, directly or not."""

    @abstractmethod
    def get_roles(self, name: str, *domains: str) -> list[str]:
        """Roles that ``name`` inherits directly."""

    @abstractmethod
    def get_users(self, name: str, *domains: str) -> list[str]:
        """Users that inherit ``name`` directly."""

    @abstractmethod
    def get_domains(self, name: str) -> list[str]:
        """Domains in which ``name`` takes part."""

    @abstractmethod
    def get_all_domains(self) -> list[str]:
        """Every known domain."""

    @abstractmethod
    def print_roles(self) -> None:
        """Log all roles."""

    @abstractmethod
    def set_logger(self, logger: logging.Logger) -> None:
        """Replace the logger."""


class RoleManagerImpl(RoleManager):
    """Role graph for a single domain, with optional name pattern matching."""

    def __init__(self, max_hierarchy_level: int = 10, matching_func: MatchingFunc | None = None) -> None:
        self._max_hierarchy_level = max_hierarchy_level
        self._matching_func = matching_func
        self._domain_matching_func: MatchingFunc | None = None
        self._logger = logging.getLogger("rbackit")
        self._all_roles: dict[str, _Role] = {}
        self._cache = _LRUCache(_CACHE_SIZE)

    def _rebuild(self) -> None:
        roles = self._all_roles
        self.clear()
        for name1, name2, domain in _links(roles):
            self.add_link(name1, name2, domain)

    def _match(self, text: str, pattern: str) -> bool:
        key = f"{text}$${pattern}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        matched = bool(self._matching_func(text, pattern))
        self._cache.put(key, matched)
        return matched

    def _matching_roles(self, name: str, is_pattern: bool) -> list[_Role]:
        found = []
        for other_name, role in list(self._all_roles.items()):
            if other_name == name:
                continue
            if is_pattern and self._match(other_name, name):
                found.append(role)
            elif not is_pattern and self._match(name, other_name):
                found.append(role)
        return found

    def _get_role(self, name: str) -> tuple[_Role, bool]:
        role = self._all_roles.get(name)
        if role is not None:
            return role, False
        role = _Role(name)
        self._all_roles[name] = role
        if self._matching_func is not None:
            for other in self._matching_roles(name, False):
                other.add_match(role)
            for other in self._matching_roles(name, True):
                role.add_match(other)
        return role, True

    def _remove_role(self, name: str) -> None:
        role = self._all_roles.pop(name, None)
        if role is not None:
            role.remove_matches()

    def add_matching_func(self, name: str, fn: MatchingFunc) -> None:
        """Treat role names as patterns matched by ``fn``."""
        self._matching_func = fn
        self._rebuild()

    def add_domain_matching_func(self, name: str, fn: MatchingFunc) -> None:
        """Record a domain matching function."""
        self._domain_matching_func = fn

    def set_logger(self, logger: logging.Logger) -> None:
        self._logger = logger

    def clear(self) -> None:
        self._cache = _LRUCache(_CACHE_SIZE)
        self._all_roles = {}

    def add_link(self, name1: str, name2: str, *domains: str) -> None:
        user, _ = self._get_role(name1)
        role, _ = self._get_role(name2)
        user.add_role(role)

    def delete_link(self, name1: str, name2: str, *domains: str) -> None:
        user, _ = self._get_role(name1)
        role, _ = self._get_role(name2)
        user.remove_role(role)

    def has_link(self, name1: str, name2: str, *domains: str) -> bool:
        if name1 == name2 or (self._matching_func is not None and self._match(name1, name2)):
            return True
        user, user_created = self._get_role(name1)
        role, role_created = self._get_role(name2)
        try:
            return self._has_link_helper(role.name, {user.name: user})
        finally:
            if role_created:
                self._remove_role(role.name)
            if user_created:
                self._remove_role(user.name)

    def _has_link_helper(self, target: str, roles: dict[str, _Role]) -> bool:
        level = self._max_hierarchy_level
        while level >= 0 and roles:
            next_roles: dict[str, _Role] = {}
            for role in roles.values():
                if target == role.name or (self._matching_func is not None and self._match(role.name, target)):
                    return True
                next_roles.update(role.iter_roles())
            roles = next_roles
            level -= 1
        return False

    def get_roles(self, name: str, *domains: str) -> list[str]:
        user, created = self._get_role(name)
        try:
            return user.get_roles()
        finally:
            if created:
                self._remove_role(name)

    def get_users(self, name: str, *domains: str) -> list[str]:
        role, created = self._get_role(name)
        try:
            return role.get_users()
        finally:
            if created:
                self._remove_role(name)

    def _to_strings(self) -> list[str]:
        return [text for text in map(str, self._all_roles.values()) if text]

    def print_roles(self) -> None:
        if self._logger.isEnabledFor(logging.INFO):
            self._logger.info("Roles: %s", self._to_strings())

    def get_domains(self, name: str) -> list[str]:
        return [DEFAULT_DOMAIN]

    def get_all_domains(self) -> list[str]:
        return [DEFAULT_DOMAIN]

    def _copy_from(self, other: RoleManagerImpl) -> None:
        for name1, name2, domain in other.links():
            self.add_link(name1, name2, domain)

    def links(self) -> Iterator[tuple[str, str, str]]:
        """Yield every direct link as ``(user, role, domain)``."""
        return _links(self._all_roles)


def _links(roles: dict[str, _Role]) -> Iterator[tuple[str, str, str]]:
    for user in list(roles.values()):
        for role_name in list(user.roles):
            yield user.name, role_name, DEFAULT_DOMAIN


class DomainManager(RoleManager):
    """Role manager keeping one role graph per domain, with optional domain patterns."""

    def __init__(self, max_hierarchy_level: int = 10) -> None:
        self._max_hierarchy_level = max_hierarchy_level
        self._matching_func: MatchingFunc | None = None
        self._domain_matching_func: MatchingFunc | None = None
        self._logger = logging.getLogger("rbackit")
        self._rm_map: dict[str, RoleManagerImpl] = {}
        self._cache = _LRUCache(_CACHE_SIZE)

    def set_logger(self, logger: logging.Logger) -> None:
        self._logger = logger

    def add_matching_func(self, name: str, fn: MatchingFunc) -> None:
        """Treat role names as patterns matched by ``fn`` in every domain."""
        self._matching_func = fn
        for rm in self._rm_map.values():
            rm.add_matching_func(name, fn)

    def add_domain_matching_func(self, name: str, fn: MatchingFunc) -> None:
        """Treat domain names as patterns matched by ``fn``."""
        self._domain_matching_func = fn
        for rm in self._rm_map.values():
            rm.add_domain_matching_func(name, fn)
        self._rebuild()

    def _rebuild(self) -> None:
        rm_map = self._rm_map
        self.clear()
        for domain, rm in rm_map.items():
            for name1, name2, _ in rm.links():
                self.add_link(name1, name2, domain)

    def clear(self) -> None:
        self._rm_map = {}
        self._cache = _LRUCache(_CACHE_SIZE)

    @staticmethod
    def _get_domain(domains: tuple[str, ...]) -> str:
        if not domains:
            return DEFAULT_DOMAIN
        if len(domains) == 1:
            return domains[0]
        raise DomainParameterError()

    def _match(self, text: str, pattern: str) -> bool:
        key = f"{text}$${pattern}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        matched = bool(self._domain_matching_func(text, pattern))
        self._cache.put(key, matched)
        return matched

    def _affected_role_managers(self, domain: str) -> list[RoleManagerImpl]:
        if self._domain_matching_func is None:
            return []
        return [
            rm
            for other, rm in list(self._rm_map.items())
            if other != domain and self._match(other, domain)
        ]

    def _get_role_manager(self, domain: str, store: bool) -> RoleManagerImpl:
        rm = self._rm_map.get(domain)
        if rm is not None:
            return rm
        rm = RoleManagerImpl(self._max_hierarchy_level, self._matching_func)
        if store:
            self._rm_map[domain] = rm
        if self._domain_matching_func is not None:
            for other, other_rm in list(self._rm_map.items()):
                if other != domain and self._match(domain, other):
                    rm._copy_from(other_rm)
        return rm

    def add_link(self, name1: str, name2: str, *domains: str) -> None:
        domain = self._get_domain(domains)
        self._get_role_manager(domain, True).add_link(name1, name2, *domains)
        for rm in self._affected_role_managers(domain):
            rm.add_link(name1, name2, *domains)

    def delete_link(self, name1: str, name2: str, *domains: str) -> None:
        domain = self._get_domain(domains)
        self._get_role_manager(domain, True).delete_link(name1, name2, *domains)
        for rm in self._affected_role_managers(domain):
            rm.delete_link(name1, name2, *domains)

    def has_link(self, name1: str, name2: str, *domains: str) -> bool:
        domain = self._get_domain(domains)
        return self._get_role_manager(domain, False).has_link(name1, name2, *domains)

    def get_roles(self, name: str, *domains: str) -> list[str]:
        domain = self._get_domain(domains)
        return self._get_role_manager(domain, False).get_roles(name, *domains)

    def get_users(self, name: str, *domains: str) -> list[str]:
        domain = self._get_domain(domains)
        return self._get_role_manager(domain, False).get_users(name, *domains)

    def _to_strings(self) -> list[str]:
        return [f"{domain}: {', '.join(rm._to_strings())}" for domain, rm in self._rm_map.items()]

    def print_roles(self) -> None:
        if self._logger.isEnabledFor(logging.INFO):
            self._logger.info("Roles: %s", self._to_strings())

    def get_domains(self, name: str) -> list[str]:
        domains = []
        for domain, rm in list(self._rm_map.items()):
            role, created = rm._get_role(name)
            try:
                if role.get_users() or role.get_roles():
                    domains.append(domain)
            finally:
                if created:
                    rm._remove_role(name)
        return domains

    def get_all_domains(self) -> list[str]:
        return list(self._rm_map)


class DefaultRoleManager(DomainManager):
    """The role manager used by default: a domain-aware role graph."""