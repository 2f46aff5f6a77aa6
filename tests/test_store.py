"""
Unit tests for the vector store.

Tests insert, count, vector/keyword/hybrid search and Arrow IPC
serialization.
"""

import pyarrow as pa
import pytest

from vaultd.errors import CorruptStoreError, DimensionMismatchError
from vaultd.models import ChunkRecord
from vaultd.store import VectorStore


def make_record(text, embedding, path="note.md", metadata="{}"):
    return ChunkRecord(text=text, embedding=embedding, metadata=metadata, source_path=path)


def test_create_empty_store():
    store = VectorStore.create(3)
    assert store.count() == 0
    assert store.dimension == 3
    assert list(store.records()) == []


@pytest.mark.parametrize("dimension", [0, -1])
def test_create_rejects_non_positive_dimension(dimension):
    with pytest.raises(ValueError):
        VectorStore.create(dimension)


def test_insert_many_counts(vector_store):
    assert vector_store.count() == 3

    added = vector_store.insert_many([make_record("extra", [0.0, 0.0, 1.0, 0.0])])

    assert added == 1
    assert vector_store.count() == 4
    assert len(vector_store) == 4


def test_insert_empty_batch(vector_store):
    assert vector_store.insert_many([]) == 0
    assert vector_store.count() == 3


def test_insert_wrong_dimension_leaves_store_untouched(vector_store):
    """A bad record anywhere in the batch rejects the whole batch."""
    batch = [
        make_record("fine", [0.0, 0.0, 1.0, 0.0]),
        make_record("too short", [1.0, 0.0]),
    ]

    with pytest.raises(DimensionMismatchError):
        vector_store.insert_many(batch)

    assert vector_store.count() == 3
    assert [r.text for r in vector_store.records()] == [
        "apples and pears",
        "carrots and leeks",
        "apples in a pie",
    ]


def test_search_identical_vector_scores_one(vector_store):
    hits = vector_store.search([1.0, 0.0, 0.0, 0.0], limit=5, min_similarity=1.0)

    assert len(hits) == 1
    assert hits[0].record.text == "apples and pears"
    assert hits[0].score == pytest.approx(1.0)


def test_search_orders_by_score(vector_store):
    hits = vector_store.search([1.0, 0.1, 0.0, 0.0], limit=3)

    assert [h.record.text for h in hits] == ["apples and pears", "apples in a pie", "carrots and leeks"]
    scores = [h.score for h in hits]
    assert scores == sorted(scores, reverse=True)
    assert all(0.0 <= s <= 1.0 for s in scores)


def test_search_limit_and_threshold(vector_store):
    assert len(vector_store.search([1.0, 0.0, 0.0, 0.0], limit=1)) == 1

    hits = vector_store.search([1.0, 0.0, 0.0, 0.0], limit=10, min_similarity=0.5)
    assert {h.record.text for h in hits} == {"apples and pears", "apples in a pie"}


def test_search_ties_keep_insertion_order():
    store = VectorStore.create(2)
    store.insert_many([
        make_record("first", [1.0, 0.0]),
        make_record("second", [2.0, 0.0]),
        make_record("third", [3.0, 0.0]),
    ])

    hits = store.search([1.0, 0.0], limit=3)

    assert [h.record.text for h in hits] == ["first", "second", "third"]


def test_search_negative_similarity_clipped():
    store = VectorStore.create(2)
    store.insert_many([make_record("opposite", [-1.0, 0.0])])

    hits = store.search([1.0, 0.0], limit=1, min_similarity=0.0)

    assert hits[0].score == 0.0


def test_search_empty_store():
    assert VectorStore.create(4).search([1.0, 0.0, 0.0, 0.0], limit=3) == []


def test_search_wrong_query_dimension(vector_store):
    with pytest.raises(DimensionMismatchError):
        vector_store.search([1.0, 0.0], limit=3)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"limit": 0},
        {"limit": 3, "min_similarity": 1.5},
        {"limit": 3, "min_similarity": -0.1},
        {"limit": 3, "mode": "semantic"},
        {"limit": 3, "mode": "hybrid"},
    ],
)
def test_search_invalid_arguments(vector_store, kwargs):
    with pytest.raises(ValueError):
        vector_store.search([1.0, 0.0, 0.0, 0.0], **kwargs)


def test_fulltext_search(vector_store):
    hits = vector_store.search(term="apples", mode="fulltext", limit=10)

    assert {h.record.text for h in hits} == {"apples and pears", "apples in a pie"}
    assert hits[0].score == pytest.approx(1.0)


def test_fulltext_no_match(vector_store):
    assert vector_store.search(term="zucchini", mode="fulltext", limit=10) == []


def test_hybrid_search_blends_scores(vector_store):
    # Vector favours carrots; the keyword pulls pie records up
    vector_only = vector_store.search([0.0, 1.0, 0.0, 0.0], limit=3)
    hybrid = vector_store.search(
        [0.0, 1.0, 0.0, 0.0], limit=3, term="pie", mode="hybrid", fts_weight=0.9
    )

    assert vector_only[0].record.text == "carrots and leeks"
    assert hybrid[0].record.text == "apples in a pie"


def test_serialize_round_trip(vector_store):
    restored = VectorStore.deserialize(vector_store.serialize())

    assert restored.count() == vector_store.count()
    assert restored.dimension == 4
    for original, copy in zip(vector_store.records(), restored.records()):
        assert copy.text == original.text
        assert copy.metadata == original.metadata
        assert copy.source_path == original.source_path
        assert copy.embedding == pytest.approx(original.embedding)

    query = [0.6, 0.8, 0.0, 0.0]
    before = [(h.record.text, h.score) for h in vector_store.search(query, limit=3)]
    after = [(h.record.text, h.score) for h in restored.search(query, limit=3)]
    assert after == before


def test_serialize_empty_store():
    restored = VectorStore.deserialize(VectorStore.create(16).serialize())

    assert restored.count() == 0
    assert restored.dimension == 16


def test_insert_after_restore(vector_store):
    restored = VectorStore.deserialize(vector_store.serialize())
    restored.insert_many([make_record("new", [0.0, 0.0, 0.0, 1.0])])

    assert restored.count() == 4
    assert restored.search([0.0, 0.0, 0.0, 1.0], limit=1)[0].record.text == "new"


@pytest.mark.parametrize("data", [b"", b"not an arrow file", b"ARROW1\x00\x00garbage"])
def test_deserialize_garbage(data):
    with pytest.raises(CorruptStoreError):
        VectorStore.deserialize(data)


def test_deserialize_rejects_non_bytes():
    with pytest.raises(CorruptStoreError):
        VectorStore.deserialize("a string")


def _ipc_bytes(table: pa.Table) -> bytes:
    sink = pa.BufferOutputStream()
    with pa.ipc.new_file(sink, table.schema) as writer:
        writer.write_table(table)
    return sink.getvalue().to_pybytes()


def test_deserialize_missing_metadata():
    table = pa.table({"text": ["a"], "metadata": ["{}"], "source_path": ["a.md"]})

    with pytest.raises(CorruptStoreError, match="format"):
        VectorStore.deserialize(_ipc_bytes(table))


def test_deserialize_wrong_format_version(vector_store):
    table = pa.ipc.open_file(pa.py_buffer(vector_store.serialize())).read_all()
    metadata = dict(table.schema.metadata)
    metadata[b"vaultd.format"] = b"99"

    with pytest.raises(CorruptStoreError, match="format"):
        VectorStore.deserialize(_ipc_bytes(table.replace_schema_metadata(metadata)))


def test_deserialize_dimension_disagrees_with_column(vector_store):
    table = pa.ipc.open_file(pa.py_buffer(vector_store.serialize())).read_all()
    metadata = dict(table.schema.metadata)
    metadata[b"vaultd.dimension"] = b"5"

    with pytest.raises(CorruptStoreError):
        VectorStore.deserialize(_ipc_bytes(table.replace_schema_metadata(metadata)))


def test_deserialize_missing_column(vector_store):
    table = pa.ipc.open_file(pa.py_buffer(vector_store.serialize())).read_all()
    table = pa.Table.from_arrays(
        [table.column("text"), table.column("embedding"), table.column("metadata")],
        names=["text", "embedding", "metadata"],
        metadata=table.schema.metadata,
    )

    with pytest.raises(CorruptStoreError, match="missing columns"):
        VectorStore.deserialize(_ipc_bytes(table))


def test_repr(vector_store):
    assert repr(vector_store) == "VectorStore(dimension=4, records=3)"
