import pytest

from rbackit.model import Model
from rbackit.persist import (
    Adapter,
    BatchAdapter,
    Dispatcher,
    FilteredAdapter,
    UpdatableAdapter,
    Watcher,
    WatcherEx,
    WatcherUpdatable,
    load_policy_array,
    load_policy_line,
)

RBAC_MODEL = """
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
"""


@pytest.fixture
def model():
    return Model.from_text(RBAC_MODEL)


def test_duplicate_rule_in_adapter(model):
    model.add_policy("p", "p", ["alice", "data1", "read"])
    assert len(model["p"]["p"].policy) == 1
    model.clear_policy()

    load_policy_array(["p", "alice", "data1", "read"], model)
    load_policy_array(["p", "alice", "data1", "read"], model)
    assert len(model["p"]["p"].policy) == 1


def test_load_policy_array_grouping(model):
    load_policy_array(["g", "alice", "admin"], model)
    assert model.get_policy("g", "g") == [["alice", "admin"]]


def test_load_policy_line_trims_leading_spaces(model):
    load_policy_line("p, alice, data1, read", model)
    assert model.get_policy("p", "p") == [["alice", "data1", "read"]]


def test_load_policy_line_ignores_comments_and_empty(model):
    load_policy_line("", model)
    load_policy_line("# p, alice, data1, read", model)
    assert model.get_policy("p", "p") == []


def test_load_policy_line_quoted_field(model):
    load_policy_line('p, "alice, bob", data1, read', model)
    assert model.get_policy("p", "p") == [["alice, bob", "data1", "read"]]


def test_load_policy_line_duplicates_ignored(model):
    load_policy_line("g, alice, admin", model)
    load_policy_line("g, alice, admin", model)
    assert model.get_policy("g", "g") == [["alice", "admin"]]


@pytest.mark.parametrize(
    "cls",
    [Adapter, FilteredAdapter, BatchAdapter, UpdatableAdapter, Dispatcher, Watcher, WatcherEx, WatcherUpdatable],
)
def test_interfaces_are_abstract(cls):
    with pytest.raises(TypeError):
        cls()