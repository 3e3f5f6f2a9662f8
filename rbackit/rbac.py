"""Role-based access control on top of policy management."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Sequence

from .management import PolicyManager
from .role_manager import DomainParameterError, RoleManager


class RbacManager(PolicyManager):
    """Adds user, role and permission operations to a PolicyManager."""

    # Direct roles

    def get_roles_for_user(self, name: str, *domain: str) -> list[str]:
        """Roles that the user has directly."""
        return self.role_manager.get_roles(name, *domain)

    def get_users_for_role(self, name: str, *domain: str) -> list[str]:
        """Users that have the role directly."""
        return self.role_manager.get_users(name, *domain)

    def has_role_for_user(self, name: str, role: str, *domain: str) -> bool:
        """Whether the user has the role directly."""
        return role in self.get_roles_for_user(name, *domain)

    def add_role_for_user(self, user: str, role: str, *domain: str) -> bool:
        """Give the user a role; False when the user already has it."""
        return self.add_grouping_policy([user, role, *domain])

    def add_roles_for_user(self, user: str, roles: Sequence[str], *domain: str) -> bool:
        """Give the user several roles; False, adding none, when any is already held."""
        return self.add_grouping_policies([[user, role, *domain] for role in roles])

    def delete_role_for_user(self, user: str, role: str, *domain: str) -> bool:
        """Take a role from the user; False when the user does not have it."""
        return self.remove_grouping_policy([user, role, *domain])

    def delete_roles_for_user(self, user: str, *domain: str) -> bool:
        """Take all roles from the user, within one domain if given."""
        if not domain:
            values = [user]
        elif len(domain) > 1:
            raise DomainParameterError()
        else:
            values = [user, "", domain[0]]
        return self.remove_filtered_grouping_policy(0, *values)

    def delete_user(self, user: str) -> bool:
        """Remove the user's grouping and policy rules."""
        grouping_removed = self.remove_filtered_grouping_policy(0, user)
        policy_removed = self.remove_filtered_policy(0, user)
        return grouping_removed or policy_removed

    def delete_role(self, role: str) -> bool:
        """Remove the role's grouping and policy rules."""
        grouping_removed = self.remove_filtered_grouping_policy(1, role)
        policy_removed = self.remove_filtered_policy(0, role)
        return grouping_removed or policy_removed

    # Permissions

    def delete_permission(self, *permission: str) -> bool:
        """Remove every rule granting the permission."""
        return self.remove_filtered_policy(1, *permission)

    def add_permission_for_user(self, user: str, *permission: str) -> bool:
        """Grant a permission to a user or role."""
        return self.add_policy([user, *permission])

    def add_permissions_for_user(self, user: str, *permissions: Sequence[str]) -> bool:
        """Grant several permissions to a user or role."""
        return self.add_policies([[user, *permission] for permission in permissions])

    def delete_permission_for_user(self, user: str, *permission: str) -> bool:
        """Revoke a permission from a user or role."""
        return self.remove_policy([user, *permission])

    def delete_permissions_for_user(self, user: str) -> bool:
        """Revoke every permission of a user or role."""
        return self.remove_filtered_policy(0, user)

    def get_permissions_for_user(self, user: str, *domain: str) -> list[list[str]]:
        """Rules of type ``p`` held directly by the user or role."""
        return self.get_named_permissions_for_user("p", user, *domain)

    def _domain_index(self, ptype: str) -> int:
        tokens = self.model["p"][ptype].tokens
        pattern = f"{ptype}_dom"
        return next((i for i, token in enumerate(tokens) if token == pattern), len(tokens))

    def get_named_permissions_for_user(self, ptype: str, user: str, *domain: str) -> list[list[str]]:
        """Rules of the given type held directly by the user or role."""
        assertion = self.model.get("p", {}).get(ptype)
        if assertion is None:
            return []
        values = [""] * len(assertion.tokens)
        values[0] = user
        if domain:
            index = self._domain_index(ptype)
            if index < len(values):
                values[index] = domain[0]
        return list(self.get_filtered_named_policy(ptype, 0, *values))

    def has_permission_for_user(self, user: str, *permission: str) -> bool:
        """Whether the user or role holds the permission directly."""
        return self.has_policy([user, *permission])

    # Implicit relations

    def _walk(self, name: str, step: Callable[[RoleManager, str], list[str]]) -> list[str]:
        found: list[str] = []
        for rm in self.rm_map.values():
            seen = {name}
            queue = deque([name])
            while queue:
                current = queue.popleft()
                for other in step(rm, current):
                    if other not in seen:
                        seen.add(other)
                        found.append(other)
                        queue.append(other)
        return found

    def get_implicit_roles_for_user(self, name: str, *domain: str) -> list[str]:
        """Roles the user has directly or through other roles."""
        return self._walk(name, lambda rm, current: rm.get_roles(current, *domain))

    def get_implicit_users_for_role(self, name: str, *domain: str) -> list[str]:
        """Users that have the role directly or through other roles."""
        return self._walk(name, lambda rm, current: rm.get_users(current, *domain))

    def get_implicit_permissions_for_user(self, user: str, *domain: str) -> list[list[str]]:
        """Rules of type ``p`` held by the user or by any of its roles."""
        return self.get_named_implicit_permissions_for_user("p", user, *domain)

    def get_named_implicit_permissions_for_user(self, ptype: str, user: str, *domain: str) -> list[list[str]]:
        """Rules of the given type held by the user or by any of its roles."""
        subjects = [user, *self.get_implicit_roles_for_user(user, *domain)]
        return [
            permission
            for subject in subjects
            for permission in self.get_named_permissions_for_user(ptype, subject, *domain)
        ]

    def get_domains_for_user(self, user: str) -> list[str]:
        """Domains in which the user has roles or users."""
        return [domain for rm in self.rm_map.values() for domain in rm.get_domains(user)]

    def get_implicit_resources_for_user(self, user: str, *domain: str) -> list[list[str]]:
        """Every rule the user obtains, with grouped fields expanded to their members."""
        resources: list[list[str]] = []
        for permission in self.get_implicit_permissions_for_user(user, *domain):
            if permission[0] == user:
                resources.append(list(permission))
                continue
            combos: list[list[str]] = [[user]]
            for token in permission[1:]:
                candidates = [*self.get_implicit_users_for_role(token, *domain), token]
                combos = [[*combo, candidate] for candidate in candidates for combo in combos]
            resources.extend(combos)
        return resources