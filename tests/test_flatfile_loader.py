# tests/test_flatfile_loader.py

import asyncio
import json

import pytest

from contentrain_query.base.exceptions import ModelNotFoundError, StorageError
from contentrain_query.base.query import QueryOptions, make_filter, make_sort
from contentrain_query.flatfile.base import matches_filter, sort_records


@pytest.fixture
def loader(json_loader_factory):
    return json_loader_factory()


def write_json(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")


# --- Matching ---


@pytest.mark.parametrize(
    "record, field, operator, value, expected",
    [
        ({"flag": True}, "flag", "eq", True, True),
        ({"flag": True}, "flag", "eq", 1, False),
        ({"n": 1}, "n", "eq", True, False),
        ({"n": 1}, "n", "eq", 1.0, True),
        ({"n": 1}, "n", "ne", "1", True),
        ({"tags": ["a", "b"]}, "tags", "eq", ["a", "b"], True),
        ({"tags": ["a", "b"]}, "tags", "eq", ("a", "b"), True),
        ({"n": 5}, "n", "gt", True, False),
        ({"s": "b"}, "s", "gt", "a", True),
        ({"s": "b"}, "s", "gt", 1, False),
        ({"s": None}, "s", "exists", None, False),
        ({}, "s", "ne", "x", True),
        ({}, "s", "ne", None, False),
        ({"s": None}, "s", "in", [None], True),
        ({"s": "Hello"}, "s", "endsWith", "LLO", True),
        ({"s": ["hello"]}, "s", "contains", "ell", False),
    ],
)
def test_matches_filter(record, field, operator, value, expected):
    assert matches_filter(record, make_filter(field, operator, value)) is expected


def test_mixed_kinds_sort_in_a_fixed_order():
    records = [{"v": "b"}, {"v": 1}, {"v": None}, {}, {"v": True}, {"v": [1]}]
    ordered = sort_records(records, [make_sort("v", "asc")])
    assert ordered == [{"v": None}, {}, {"v": True}, {"v": 1}, {"v": "b"}, {"v": [1]}]


# --- Content directory ---


async def test_records_carry_system_fields(loader, logger):
    records, _ = await loader.fetch("faqitems", logger, QueryOptions())
    assert records[0]["createdAt"] == "2024-01-01T00:00:00.000Z"
    assert records[0]["status"] == "publish"


async def test_filters_on_system_fields(loader, logger):
    options = QueryOptions(filters=[make_filter("createdAt", "startsWith", "2024-01")])
    _, total = await loader.fetch("faqitems", logger, options)
    assert total == 3


async def test_returned_records_are_copies(loader, logger):
    records, _ = await loader.fetch("faqitems", logger, QueryOptions())
    records[0]["question"] = "changed"
    again, _ = await loader.fetch("faqitems", logger, QueryOptions())
    assert again[0]["question"] == "How do I track my order?"


async def test_content_is_read_once_until_reload(loader, logger, content_dir):
    _, total = await loader.fetch("faqitems", logger, QueryOptions())
    assert total == 3

    write_json(content_dir / "faqitems" / "faqitems.json", [{"ID": "f9", "status": "publish"}])
    _, total = await loader.fetch("faqitems", logger, QueryOptions())
    assert total == 3

    await loader.reload()
    records, total = await loader.fetch("faqitems", logger, QueryOptions())
    assert total == 1
    assert records[0]["ID"] == "f9"


async def test_reading_one_model_does_not_wait_on_another(loader, logger):
    async with loader._document_lock(("authors", None)):
        records, total = await asyncio.wait_for(
            loader.fetch("faqitems", logger, QueryOptions()), timeout=1
        )
    assert total == 3


async def test_concurrent_fetches_read_a_document_once(
    loader, logger, content_dir, monkeypatch
):
    reads = []
    read_json = loader._read_json

    async def counting_read(path, log):
        reads.append(path)
        return await read_json(path, log)

    monkeypatch.setattr(loader, "_read_json", counting_read)
    results = await asyncio.gather(
        *(loader.fetch("faqitems", logger, QueryOptions()) for _ in range(5))
    )

    assert [total for _, total in results] == [3] * 5
    assert reads.count(content_dir / "faqitems" / "faqitems.json") == 1


async def test_invalid_json_raises_storage_error(loader, logger, content_dir):
    (content_dir / "faqitems" / "faqitems.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(StorageError) as exc_info:
        await loader.fetch("faqitems", logger, QueryOptions())
    assert exc_info.value.code == "STORAGE_ERROR"
    assert exc_info.value.context["path"].endswith("faqitems.json")


async def test_content_file_must_hold_a_list(loader, logger, content_dir):
    write_json(content_dir / "faqitems" / "faqitems.json", {"ID": "f1"})
    with pytest.raises(StorageError):
        await loader.fetch("faqitems", logger, QueryOptions())


async def test_missing_content_file(loader, logger, content_dir):
    (content_dir / "authors" / "authors.json").unlink()
    with pytest.raises(StorageError):
        await loader.fetch("authors", logger, QueryOptions())


async def test_missing_field_definitions(loader, logger, content_dir):
    (content_dir / "models" / "authors.json").unlink()
    with pytest.raises(ModelNotFoundError) as exc_info:
        await loader.get_metadata("authors", logger)
    assert exc_info.value.model_id == "authors"


async def test_missing_metadata_index(loader, logger, content_dir):
    (content_dir / "models" / "metadata.json").unlink()
    with pytest.raises(StorageError):
        await loader.list_models(logger)


async def test_relation_without_reference(loader, logger, content_dir):
    fields_path = content_dir / "models" / "workitems.json"
    fields = json.loads(fields_path.read_text(encoding="utf-8"))
    for field in fields:
        if field["fieldId"] == "author":
            field["options"] = {}
    write_json(fields_path, fields)

    with pytest.raises(StorageError) as exc_info:
        await loader.get_metadata("workitems", logger)
    assert exc_info.value.context["field_id"] == "author"


async def test_metadata_is_parsed_from_content_files(loader, logger):
    metadata = await loader.get_metadata("faqitems", logger)
    assert metadata.name == "FAQ Items"
    assert metadata.type == "JSON"
    assert metadata.field_names == ["question", "answer", "order"]
    assert metadata.relations == {}
