import logging
from types import MappingProxyType

import pytest

from docfill.errors import InvalidDataStructureError
from docfill.services.context import build_context, empty_context, to_plain
from docfill.services.paths import Path
from docfill.services.records import FlatRecord, read_records, records_from_mapping, records_from_pairs

CSV = '''key,value,comment
# people
user.name,Ana,
user.city,"Madrid, Spain",quoted delimiter
user.empty,,
broken line
items.0,First
items.1,Second
'''


def test_read_records_skips_header_comments_and_malformed_rows(caplog):
    with caplog.at_level(logging.WARNING):
        records = read_records(CSV)
    assert [str(r.path) for r in records] == ["user.name", "user.city", "user.empty", "items.0", "items.1"]
    assert records[1].value == "Madrid, Spain"
    assert records[1].comment == "quoted delimiter"
    assert records[2].value == ""
    assert "expected 2 or 3 columns" in caplog.text


def test_records_from_mapping_flattens_nested_data():
    records = records_from_mapping({"user": {"tags": ["a", "b"], "active": True}, "n": 3})
    assert [(str(r.path), r.value) for r in records] == [
        ("user.tags.0", "a"), ("user.tags.1", "b"), ("user.active", "true"), ("n", "3"),
    ]


def test_empty_collections_flatten_to_nothing(renderer):
    records = records_from_mapping({"tags": [], "meta": {}, "a": 1})
    assert [(str(r.path), r.value) for r in records] == [("a", "1")]
    result = renderer.render("{% each t in tags %}{{ t }}{% else %}none{% endeach %}", build_context(records))
    assert result.markup == "none"


def test_contiguous_integer_keys_become_sequences(make_context):
    ctx = make_context(("items.0", "First"), ("items.1", "Second"), ("user.name", "Ana"))
    assert ctx["items"] == ("First", "Second")
    assert ctx["user"]["name"] == "Ana"
    assert isinstance(ctx["user"], MappingProxyType)


def test_sparse_integer_keys_stay_a_mapping(make_context):
    ctx = make_context(("items.0", "a"), ("items.2", "c"))
    assert dict(ctx["items"]) == {"0": "a", "2": "c"}


def test_out_of_order_indexes_are_still_an_array(make_context):
    ctx = make_context(("items.1", "b"), ("items.0", "a"))
    assert ctx["items"] == ("a", "b")


def test_later_record_overrides_earlier(make_context):
    ctx = make_context(("name", "old"), ("name", "new"))
    assert ctx["name"] == "new"


def test_container_wins_over_scalar(make_context, caplog):
    with caplog.at_level(logging.WARNING):
        ctx = make_context(("user", "Ana"), ("user.name", "Ana"), ("user", "again"))
    assert to_plain(ctx) == {"user": {"name": "Ana"}}
    assert "user" in caplog.text


def test_strict_mode_rejects_conflicts(make_context):
    with pytest.raises(InvalidDataStructureError) as exc:
        make_context(("user", "Ana"), ("user.name", "Ana"), strict=True)
    assert exc.value.details["path"] == "user"


def test_max_depth_is_enforced(make_context):
    with pytest.raises(InvalidDataStructureError):
        make_context(("a.b.c.d", "x"), max_depth=3)


def test_context_is_read_only(make_context):
    ctx = make_context(("user.name", "Ana"))
    with pytest.raises(TypeError):
        ctx["user"]["name"] = "Eva"


def test_empty_input_gives_empty_context():
    assert dict(build_context([])) == {}
    assert dict(empty_context()) == {}


def test_root_record_is_rejected():
    with pytest.raises(InvalidDataStructureError):
        build_context([FlatRecord(Path(), "x", 1)])


def test_pairs_keep_present_empty_values(make_context):
    ctx = make_context(("note", None), ("title", ""))
    assert ctx["note"] == "" and ctx["title"] == ""
    assert len(records_from_pairs([("a", 1)])) == 1
