import logging

import pytest

from rbackit.model import Assertion, Model, ModelError, PolicyOp

BASIC_MODEL = """[request_definition]
r = sub, obj, act

[policy_definition]
p = sub, obj, act

[policy_effect]
e = some(where (p.eft == allow))

[matchers]
m = r.sub == p.sub && r.obj == p.obj && r.act == p.act
"""

RBAC_MODEL = """[request_definition]
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

BASIC_CONFIG = {
    "request_definition::r": "sub, obj, act",
    "policy_definition::p": "sub, obj, act",
    "policy_effect::e": "some(where (p.eft == allow))",
    "matchers::m": "r.sub == p.sub && r.obj == p.obj && r.act == p.act",
}

SECTION_NAMES = ["request_definition", "policy_definition", "policy_effect", "matchers"]


class RecordingRoleManager:
    def __init__(self):
        self.links = []

    def add_link(self, name1, name2, *domain):
        self.links.append(("add", name1, name2, domain))

    def delete_link(self, name1, name2, *domain):
        self.links.append(("delete", name1, name2, domain))


@pytest.fixture
def rbac_model():
    return Model.from_text(RBAC_MODEL)


def test_new_model_is_empty():
    assert len(Model()) == 0


def test_model_from_file(tmp_path):
    path = tmp_path / "basic_model.conf"
    path.write_text(BASIC_MODEL)
    m = Model.from_file(path)
    assert m["r"]["r"].tokens == ["r_sub", "r_obj", "r_act"]
    assert m["m"]["m"].value == "r_sub == p_sub && r_obj == p_obj && r_act == p_act"


def test_model_from_missing_file_fails(tmp_path):
    with pytest.raises(OSError):
        Model.from_file(tmp_path / "absent.conf")


def test_model_from_string():
    m = Model.from_text(BASIC_MODEL)
    assert m["p"]["p"].tokens == ["p_sub", "p_obj", "p_act"]
    assert m["e"]["e"].value == "some(where (p_eft == allow))"


def test_load_model_from_config():
    m = Model()
    m.load_model_from_config(BASIC_CONFIG)
    assert m["p"]["p"].value == "sub, obj, act"

    m = Model()
    with pytest.raises(ModelError) as excinfo:
        m.load_model_from_config({})
    for name in SECTION_NAMES:
        assert name in str(excinfo.value)


def test_has_section():
    m = Model()
    m.load_model_from_config(BASIC_CONFIG)
    assert all(m.has_section(sec) for sec in ("r", "p", "e", "m"))

    m = Model()
    with pytest.raises(ModelError):
        m.load_model_from_config({})
    assert not any(m.has_section(sec) for sec in ("r", "p", "e", "m"))


def test_add_def():
    m = Model()
    assert m.add_def("r", "r", "sub, obj, act") is True
    assert m.add_def("r", "r", "") is False


def test_numbered_definitions_are_loaded():
    text = BASIC_MODEL.replace("p = sub, obj, act", "p = sub, obj, act\np2 = sub, act")
    m = Model.from_text(text)
    assert list(m["p"]) == ["p", "p2"]
    assert m["p"]["p2"].tokens == ["p2_sub", "p2_act"]


def test_continuation_line_and_comment():
    text = BASIC_MODEL.replace(
        "m = r.sub == p.sub && r.obj == p.obj && r.act == p.act",
        "# comment\nm = r.sub == p.sub && \\\n    r.obj == p.obj # trailing",
    )
    m = Model.from_text(text)
    assert m["m"]["m"].value == "r_sub == p_sub && r_obj == p_obj"


def test_matcher_with_in_uses_parentheses():
    m = Model()
    m.add_def("m", "m", "r.sub in ['alice', 'bob']")
    assert m["m"]["m"].value == "r_sub in ('alice', 'bob')"


@pytest.mark.parametrize(
    "matcher, expected",
    [
        (
            "r.sub == p.sub && r.obj == p.obj && r_func(r.act, p.act) && testr_func(r.act, p.act)",
            "r_sub == p_sub && r_obj == p_obj && r_func(r_act, p_act) && testr_func(r_act, p_act)",
        ),
        (
            "r.sub == p.sub && r.obj == p.obj && p_func(r.act, p.act) && testp_func(r.act, p.act)",
            "r_sub == p_sub && r_obj == p_obj && p_func(r_act, p_act) && testp_func(r_act, p_act)",
        ),
    ],
)
def test_model_to_text_round_trip(matcher, expected):
    data = {
        "r": "sub, obj, act",
        "p": "sub, obj, act",
        "e": "some(where (p.eft == allow))",
        "m": matcher,
    }
    wanted = {
        "r": "sub, obj, act",
        "p": "sub, obj, act",
        "e": "some(where (p_eft == allow))",
        "m": expected,
    }
    m = Model()
    for ptype, value in data.items():
        m.add_def(ptype, ptype, value)
    new_model = Model.from_text(m.to_text())
    for ptype, value in wanted.items():
        assert new_model[ptype][ptype].value == value


def test_to_text_includes_role_definition(rbac_model):
    text = rbac_model.to_text()
    assert "[role_definition]\ng = _, _\n" in text
    assert "m = g(r.sub, p.sub) && r.obj == p.obj && r.act == p.act\n" in text


def test_add_has_and_remove_policy(rbac_model):
    rbac_model.add_policy("p", "p", ["alice", "data1", "read"])
    rbac_model.add_policy("p", "p", ["bob", "data2", "write"])
    assert rbac_model.has_policy("p", "p", ["bob", "data2", "write"])
    assert rbac_model.has_policies("p", "p", [["x", "y", "z"], ["alice", "data1", "read"]])
    assert not rbac_model.has_policies("p", "p", [["x", "y", "z"]])

    assert rbac_model.remove_policy("p", "p", ["alice", "data1", "read"]) is True
    assert rbac_model.remove_policy("p", "p", ["alice", "data1", "read"]) is False
    assert rbac_model.get_policy("p", "p") == [["bob", "data2", "write"]]
    assert rbac_model["p"]["p"].policy_map == {"bob,data2,write": 0}


def test_add_policies_with_affected_skips_duplicates(rbac_model):
    rules = [["jack", "data4", "read"], ["jack", "data4", "read"], ["katy", "data4", "write"]]
    added = rbac_model.add_policies_with_affected("p", "p", rules)
    assert added == [["jack", "data4", "read"], ["katy", "data4", "write"]]
    assert rbac_model.add_policies_with_affected("p", "p", rules) == []
    rbac_model.add_policies("p", "p", [["ham", "data4", "write"]])
    assert len(rbac_model.get_policy("p", "p")) == 3


def test_remove_policies_reindexes(rbac_model):
    rbac_model.add_policies("p", "p", [["a", "o", "r"], ["b", "o", "r"], ["c", "o", "r"]])
    removed = rbac_model.remove_policies_with_effected("p", "p", [["a", "o", "r"], ["z", "o", "r"]])
    assert removed == [["a", "o", "r"]]
    assert rbac_model["p"]["p"].policy_map == {"b,o,r": 0, "c,o,r": 1}
    assert rbac_model.remove_policies("p", "p", [["z", "o", "r"]]) is False


def test_get_filtered_policy(rbac_model):
    rbac_model.add_policies(
        "p",
        "p",
        [
            ["alice", "data1", "read"],
            ["bob", "data2", "write"],
            ["data2_admin", "data2", "read"],
            ["data2_admin", "data2", "write"],
        ],
    )
    assert rbac_model.get_filtered_policy("p", "p", 1, "data2", "write") == [
        ["bob", "data2", "write"],
        ["data2_admin", "data2", "write"],
    ]
    assert rbac_model.get_filtered_policy("p", "p", 0, "data2_admin", "", "read") == [
        ["data2_admin", "data2", "read"]
    ]


def test_remove_filtered_policy(rbac_model):
    rbac_model.add_policies("p", "p", [["a", "d1", "r"], ["b", "d2", "w"], ["c", "d2", "r"]])
    removed = rbac_model.remove_filtered_policy("p", "p", 1, "d2")
    assert removed == [["b", "d2", "w"], ["c", "d2", "r"]]
    assert rbac_model.get_policy("p", "p") == [["a", "d1", "r"]]
    assert rbac_model["p"]["p"].policy_map == {"a,d1,r": 0}
    assert rbac_model.remove_filtered_policy("p", "p", 0, "nobody") == []


def test_update_policy(rbac_model):
    rbac_model.add_policy("p", "p", ["eve", "data3", "read"])
    assert rbac_model.update_policy("p", "p", ["eve", "data3", "read"], ["eve", "data3", "write"])
    assert rbac_model.get_policy("p", "p") == [["eve", "data3", "write"]]
    assert not rbac_model.update_policy("p", "p", ["eve", "data3", "read"], ["x", "y", "z"])


def test_update_policies_success(rbac_model):
    rbac_model.add_policies("p", "p", [["eve", "data3", "write"], ["jack", "data4", "read"], ["leyo", "data4", "read"]])
    ok = rbac_model.update_policies(
        "p",
        "p",
        [["eve", "data3", "write"], ["leyo", "data4", "read"]],
        [["eve", "data3", "read"], ["leyo", "data4", "write"]],
    )
    assert ok is True
    assert rbac_model.get_policy("p", "p") == [
        ["eve", "data3", "read"],
        ["jack", "data4", "read"],
        ["leyo", "data4", "write"],
    ]


def test_update_policies_rolls_back(rbac_model):
    rbac_model.add_policy("p", "p", ["eve", "data3", "write"])
    ok = rbac_model.update_policies(
        "p",
        "p",
        [["eve", "data3", "write"], ["jack", "data4", "read"]],
        [["eve", "data3", "read"], ["jack", "data4", "write"]],
    )
    assert ok is False
    assert rbac_model.get_policy("p", "p") == [["eve", "data3", "write"]]
    assert rbac_model["p"]["p"].policy_map == {"eve,data3,write": 0}


def test_values_for_field(rbac_model):
    rbac_model.add_policies("p", "p", [["alice", "data1", "read"], ["bob", "data2", "write"], ["alice", "data2", "read"]])
    rbac_model.add_policy("g", "g", ["alice", "data2_admin"])
    assert rbac_model.get_values_for_field_in_policy("p", "p", 0) == ["alice", "bob"]
    assert rbac_model.get_values_for_field_in_policy_all_types("p", 2) == ["read", "write"]
    assert rbac_model.get_values_for_field_in_policy_all_types("g", 1) == ["data2_admin"]


def test_clear_policy(rbac_model):
    rbac_model.add_policy("p", "p", ["alice", "data1", "read"])
    rbac_model.add_policy("g", "g", ["alice", "admin"])
    rbac_model.clear_policy()
    assert rbac_model.get_policy("p", "p") == []
    assert rbac_model.get_policy("g", "g") == []
    assert not rbac_model.has_policy("g", "g", ["alice", "admin"])


def test_copy_is_independent(rbac_model):
    rbac_model.add_policy("p", "p", ["alice", "data1", "read"])
    copied = rbac_model.copy()
    copied.add_policy("p", "p", ["bob", "data2", "write"])
    assert rbac_model.get_policy("p", "p") == [["alice", "data1", "read"]]
    assert copied.get_policy("p", "p") == [["alice", "data1", "read"], ["bob", "data2", "write"]]
    assert copied.to_text() == rbac_model.to_text()


def test_assertion_copy():
    original = Assertion(key="p", value="sub", tokens=["p_sub"], policy=[["a"]], policy_map={"a": 0})
    clone = original.copy()
    clone.policy[0].append("b")
    assert original.policy == [["a"]]
    assert clone.tokens == ["p_sub"]


def test_build_role_links(rbac_model):
    rbac_model.add_policy("g", "g", ["alice", "admin"])
    rbac_model.add_policy("g", "g", ["bob", "user", "extra"])
    rm = RecordingRoleManager()
    rbac_model.build_role_links({"g": rm})
    assert rm.links == [("add", "alice", "admin", ()), ("add", "bob", "user", ())]
    assert rbac_model["g"]["g"].rm is rm


def test_build_incremental_role_links(rbac_model):
    rm = RecordingRoleManager()
    rbac_model.build_incremental_role_links({"g": rm}, PolicyOp.ADD, "g", "g", [["alice", "admin"]])
    rbac_model.build_incremental_role_links({"g": rm}, PolicyOp.REMOVE, "g", "g", [["alice", "admin"]])
    rbac_model.build_incremental_role_links({"g": rm}, PolicyOp.ADD, "p", "p", [["x", "y", "z"]])
    assert rm.links == [("add", "alice", "admin", ()), ("delete", "alice", "admin", ())]


def test_build_role_links_errors():
    short = Assertion(key="g", value="_", policy=[["a", "b"]])
    with pytest.raises(ModelError):
        short.build_role_links(RecordingRoleManager())
    narrow = Assertion(key="g", value="_, _, _", policy=[["a", "b"]])
    with pytest.raises(ModelError):
        narrow.build_role_links(RecordingRoleManager())
    with pytest.raises(ModelError):
        narrow.build_incremental_role_links(RecordingRoleManager(), PolicyOp.ADD, [["a"]])


def test_sort_policies_by_priority_and_insert():
    text = BASIC_MODEL.replace("p = sub, obj, act", "p = priority, sub, obj, act")
    m = Model.from_text(text)
    m.add_policy("p", "p", ["10", "alice", "data1", "read"])
    m.add_policy("p", "p", ["1", "bob", "data1", "read"])
    m.sort_policies_by_priority()
    assert [rule[0] for rule in m.get_policy("p", "p")] == ["1", "10"]
    m.add_policy("p", "p", ["5", "carol", "data1", "read"])
    assert [rule[0] for rule in m.get_policy("p", "p")] == ["1", "5", "10"]
    assert m["p"]["p"].policy_map == {
        "1,bob,data1,read": 0,
        "5,carol,data1,read": 1,
        "10,alice,data1,read": 2,
    }


def test_sort_policies_by_subject_hierarchy():
    text = (
        RBAC_MODEL.replace("p = sub, obj, act", "p = sub, obj, act, eft")
        .replace("e = some(where (p.eft == allow))", "e = subjectPriority(p.eft) || deny")
    )
    m = Model.from_text(text)
    m.add_policies(
        "p",
        "p",
        [["root", "data1", "read", "deny"], ["admin", "data1", "read", "allow"], ["alice", "data1", "read", "deny"]],
    )
    m.add_policies("g", "g", [["alice", "admin"], ["admin", "root"]])
    m.sort_policies_by_subject_hierarchy()
    assert [rule[0] for rule in m.get_policy("p", "p")] == ["alice", "admin", "root"]
    assert m["p"]["p"].policy_map["alice,data1,read,deny"] == 0


def test_subject_hierarchy_ignored_for_other_effects(rbac_model):
    rbac_model.add_policies("p", "p", [["b", "o", "r"], ["a", "o", "r"]])
    rbac_model.sort_policies_by_subject_hierarchy()
    assert rbac_model.get_policy("p", "p") == [["b", "o", "r"], ["a", "o", "r"]]


def test_print_model_and_policy_log(rbac_model, caplog):
    caplog.set_level(logging.INFO, logger="rbackit")
    rbac_model.add_policy("p", "p", ["alice", "data1", "read"])
    rbac_model.print_model()
    rbac_model.print_policy()
    assert "Model:" in caplog.text
    assert "alice" in caplog.text