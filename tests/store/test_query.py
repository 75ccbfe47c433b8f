from __future__ import annotations

from docrepo.store.query import Filter, Query


def test_query_is_immutable_when_chained() -> None:
    base = Query()
    narrowed = base.where("discriminator", "Note")
    assert base.filters == ()
    assert narrowed.filters == (Filter("discriminator", "Note"),)


def test_matches_requires_every_filter() -> None:
    q = Query().where("pk", "u1").where("discriminator", "Note")
    assert q.matches({"pk": "u1", "discriminator": "Note"})
    assert not q.matches({"pk": "u1", "discriminator": "Comment"})
    assert not q.matches({"discriminator": "Note"})


def test_apply_filters_and_orders_descending() -> None:
    docs = [
        {"id": "a", "discriminator": "Note", "_ts": 2},
        {"id": "b", "discriminator": "Note", "_ts": 3},
        {"id": "c", "discriminator": "Comment", "_ts": 9},
        {"id": "d", "discriminator": "Note", "_ts": 1},
    ]
    q = Query().where("discriminator", "Note").order_by("_ts", descending=True)
    assert [d["id"] for d in q.apply(docs)] == ["b", "a", "d"]


def test_documents_missing_the_order_field_sort_first_ascending() -> None:
    docs = [{"id": "a", "_ts": 5}, {"id": "b"}]
    assert [d["id"] for d in Query().order_by("_ts").apply(docs)] == ["b", "a"]


def test_str_renders_readable_sql() -> None:
    q = Query().where("discriminator", "Note").order_by("_ts", descending=True)
    assert str(q) == "SELECT * FROM c WHERE c.discriminator = 'Note' ORDER BY c._ts DESC"
    assert str(Query()) == "SELECT * FROM c"
