# rbackit

This package provides building blocks for role-based access control in Python.

- `rbackit.model` holds the access control model (`Model`, `Assertion`,
  `PolicyOp`, `ModelError`). It parses a model definition with request,
  policy, role, effect and matcher sections. It keeps the policy and grouping
  rules in memory, and can sort rules by priority or by subject hierarchy.
- `rbackit.role_manager` holds the role inheritance graphs: `RoleManager`
  (the abstract interface), `RoleManagerImpl`, `DomainManager` and
  `DefaultRoleManager`. Matching functions let role names or domain names act
  as patterns.
- `rbackit.persist` holds the abstract interfaces `Adapter`,
  `FilteredAdapter`, `BatchAdapter`, `UpdatableAdapter`, `Dispatcher`,
  `Watcher`, `WatcherEx` and `WatcherUpdatable`. It also has
  `load_policy_line` and `load_policy_array`, which read rules into a model.
- `rbackit.file_adapter` holds `FileAdapter` and `FilteredFileAdapter`. They
  load policies from comma separated text files and save them back. A
  `Filter` selects which lines to load.
- `rbackit.cache` holds an in-memory decision cache (`Cache`, `DefaultCache`,
  `NoSuchKeyError`).
- `rbackit.management` holds `PolicyManager`, which queries and edits policy
  and grouping rules. It keeps role managers, the adapter and an optional
  watcher in step.
- `rbackit.rbac` holds `RbacManager`, a `PolicyManager` with the user, role
  and permission API. This includes implicit roles, users, permissions and
  resources.

## Installation

```
pip install rbackit
```

## A model

```python
from rbackit.model import Model

model = Model.from_text("""
[request_definition]
r = sub, obj, act

[policy_definition]
p = sub, obj, act

[role_definition]
g = _, _

[policy_effect]
e = some(where (p.eft == allow))

[matchers]
m = g(r.sub, p.sub) && r.obj == p.obj && r.act == p.act
""")

model.add_policy("p", "p", ["alice", "data1", "read"])
model.has_policy("p", "p", ["alice", "data1", "read"])   # True
model.get_filtered_policy("p", "p", 0, "alice")          # [["alice", "data1", "read"]]
print(model.to_text())
```

In a field filter, an empty string matches any value. If the request,
policy, effect or matcher section is missing, loading raises `ModelError`.
`Model.from_file(path)` reads the same format from a file.

## Roles

```python
from rbackit.role_manager import DefaultRoleManager

rm = DefaultRoleManager(10)
rm.add_link("alice", "admin", "domain1")
rm.has_link("alice", "admin", "domain1")   # True
rm.get_roles("alice", "domain1")           # ["admin"]
```

The constructor argument is the maximum hierarchy depth that `has_link`
follows. Passing more than one domain raises `DomainParameterError`.

`add_matching_func(name, fn)` makes role names patterns.
`add_domain_matching_func(name, fn)` does the same for domain names. In both,
`fn(text, pattern)` returns a bool.

## Policy files

A policy file holds one rule per line, and the first field names the policy
type. Empty lines and lines that start with `#` are skipped.

```
p, alice, data1, read
g, alice, data2_admin
```

```python
from rbackit.file_adapter import FileAdapter, Filter, FilteredFileAdapter

adapter = FileAdapter("policy.csv")
adapter.load_policy(model)
adapter.save_policy(model)

filtered = FilteredFileAdapter("policy.csv")
filtered.load_filtered_policy(model, Filter(p=["alice"]))
filtered.is_filtered()   # True
```

`FilteredFileAdapter.save_policy` raises `RuntimeError` while a filtered
policy is loaded.

The file adapters do not change single rules in the file. Their add, remove
and update methods raise `AutoSaveUnsupportedError`, a subclass of
`NotImplementedError`. Call `save_policy` to write the whole policy.

## Managing policy and roles

```python
from rbackit.rbac import RbacManager

manager = RbacManager(model, "policy.csv")   # loads the policy from the file

manager.get_policy()                         # [["alice", "data1", "read"]]
manager.add_role_for_user("bob", "data2_admin")
manager.get_roles_for_user("bob")            # ["data2_admin"]
manager.get_implicit_roles_for_user("alice")
manager.get_implicit_permissions_for_user("alice")
manager.save_policy()
```

The first argument is a `Model` or the path of a model file. The second is an
`Adapter` or the path of a policy file, which is wrapped in `FileAdapter`.
Keyword options:

- `watcher`
- `auto_save`
- `auto_build_role_links`
- `auto_notify_watcher`
- `max_hierarchy_level`

Add methods return `False` when the rule already exists. Remove methods
return `False` when the rule is absent. The batch versions add nothing when
any of the given rules already exists.

## What is not included

The package keeps models, rules and role graphs. It does not evaluate
matcher or effect expressions, so it makes no allow or deny decisions for a
request. Matchers are kept only as text. It has no command-line tool, and the
only storage it provides is the text-file adapter.

## Running the tests

```
pip install -e ".[test]"
pytest
```