# tests/test_client.py
"""End-to-end queries through ContentrainClient, including result caching."""

import pytest

from contentrain_query import ContentrainClient
from contentrain_query.base.cache import CacheManager, get_default_cache
from contentrain_query.base.config import ContentrainConfig
from contentrain_query.base.exceptions import StorageError

from conftest import ids_of


@pytest.fixture
def client(counting_loader, cache, config):
    return ContentrainClient(counting_loader, config=config, cache=cache)


def published_faqs(client):
    return client.query("faqitems").where("status", "eq", "publish").order_by("order")


class BrokenCache:
    """Cache whose every operation fails."""

    def get(self, key):
        raise RuntimeError("cache unavailable")

    def set(self, key, value, ttl=None, model_id=None):
        raise RuntimeError("cache unavailable")


async def test_end_to_end_query(client):
    result = await (
        client.query("workitems")
        .where("status", "eq", "publish")
        .order_by("order")
        .include("category")
        .limit(2)
        .get()
    )
    assert ids_of(client.loader, result.data) == ["w1", "w2"]
    assert result.total == 5
    assert result.pagination.has_more is True
    w1 = result.data[0]
    assert ids_of(client.loader, w1["_relations"]["category"]) == ["c1"]


async def test_builders_start_from_the_default_locale(client):
    assert client.query("services").state.locale == "en"
    result = await client.query("services").order_by("order").get()
    assert result.data[0]["title"] == "Web Design"

    result = await client.query("services").locale("tr").order_by("order").get()
    assert result.data[0]["title"] == "Web Tasarım"


async def test_repeated_query_is_served_from_cache(client, counting_loader):
    first = await published_faqs(client).get()
    second = await published_faqs(client).get()

    assert second == first
    assert second is not first
    assert len(counting_loader.fetch_calls) == 1
    stats = client.cache_stats()
    assert (stats["hits"], stats["misses"], stats["size"]) == (1, 1, 1)


async def test_different_queries_use_different_entries(client, counting_loader):
    await published_faqs(client).get()
    await published_faqs(client).limit(1).get()
    await published_faqs(client).count()
    await client.query("services").get()
    await client.query("services").locale("tr").get()
    assert len(counting_loader.fetch_calls) == 5


async def test_cached_entry_expires(client, counting_loader, clock):
    await published_faqs(client).get()
    clock.advance(59)
    await published_faqs(client).get()
    assert len(counting_loader.fetch_calls) == 1

    clock.advance(1)
    await published_faqs(client).get()
    assert len(counting_loader.fetch_calls) == 2


async def test_per_query_ttl(client, counting_loader, clock):
    await published_faqs(client).cache(ttl=1000).get()
    clock.advance(500)
    await published_faqs(client).cache(ttl=1000).get()
    assert len(counting_loader.fetch_calls) == 1


async def test_per_model_ttl(counting_loader, cache, clock):
    config = ContentrainConfig(default_locale="en", default_ttl=60, model_ttl={"faqitems": 5})
    client = ContentrainClient(counting_loader, config=config, cache=cache)

    await client.query("faqitems").get()
    await client.query("workitems").get()
    clock.advance(6)
    await client.query("faqitems").get()
    await client.query("workitems").get()

    assert [model for model, _ in counting_loader.fetch_calls] == [
        "faqitems",
        "workitems",
        "faqitems",
    ]


async def test_no_cache_bypasses_the_cache(client, counting_loader):
    await published_faqs(client).no_cache().get()
    await published_faqs(client).no_cache().get()
    assert len(counting_loader.fetch_calls) == 2
    assert client.cache_stats()["size"] == 0


async def test_caching_can_be_disabled_by_config(counting_loader, cache):
    config = ContentrainConfig(default_locale="en", cache_enabled=False)
    client = ContentrainClient(counting_loader, config=config, cache=cache)

    await client.query("faqitems").get()
    await client.query("faqitems").get()
    assert len(counting_loader.fetch_calls) == 2

    # An explicit cache() call still opts in
    await client.query("faqitems").cache().get()
    await client.query("faqitems").cache().get()
    assert len(counting_loader.fetch_calls) == 3


async def test_invalidate_forces_a_refetch(client, counting_loader):
    await published_faqs(client).get()
    await client.query("workitems").get()

    assert client.invalidate("faqitems") == 1
    await published_faqs(client).get()
    await client.query("workitems").get()
    assert [model for model, _ in counting_loader.fetch_calls] == [
        "faqitems",
        "workitems",
        "faqitems",
    ]

    assert client.invalidate() == 2
    assert client.cache_stats()["size"] == 0


async def test_clear_cache(client):
    await published_faqs(client).get()
    client.clear_cache()
    assert client.cache_stats() == {
        "hits": 0,
        "misses": 0,
        "evictions": 0,
        "expirations": 0,
        "size": 0,
    }


async def test_count_is_cached(client, counting_loader):
    assert await published_faqs(client).count() == 2
    assert await published_faqs(client).count() == 2
    assert len(counting_loader.fetch_calls) == 1


async def test_failed_fetch_is_not_cached(client, counting_loader):
    error = StorageError("disk on fire")
    counting_loader.fail_with = error
    with pytest.raises(StorageError) as exc_info:
        await published_faqs(client).get()
    assert exc_info.value is error
    assert client.cache_stats()["size"] == 0

    counting_loader.fail_with = None
    result = await published_faqs(client).get()
    assert result.total == 2
    assert len(counting_loader.fetch_calls) == 2


async def test_broken_cache_degrades_to_uncached_queries(counting_loader, config):
    client = ContentrainClient(counting_loader, config=config, cache=BrokenCache())
    first = await published_faqs(client).get()
    second = await published_faqs(client).get()

    assert ids_of(counting_loader, first.data) == ids_of(counting_loader, second.data)
    assert len(counting_loader.fetch_calls) == 2


async def test_cached_results_include_relations(client, counting_loader):
    first = await client.query("workitems").include("author").get()
    second = await client.query("workitems").include("author").get()
    assert second == first
    assert len(counting_loader.related_calls) == 1


async def test_changing_a_result_does_not_change_the_cached_copy(client, counting_loader):
    first = await published_faqs(client).get()
    first.data[0]["question"] = "changed"
    first.data.append({"ID": "ghost"})

    second = await published_faqs(client).get()
    assert len(second.data) == second.total == 2
    assert second.data[0]["question"] == "Do you ship internationally?"

    second.data.clear()
    third = await published_faqs(client).get()
    assert ids_of(counting_loader, third.data) == ["f3", "f1"]
    assert len(counting_loader.fetch_calls) == 1


async def test_changing_resolved_relations_does_not_change_the_cache(client):
    first = await client.query("workitems").include("category").get()
    w1 = next(r for r in first.data if r[client.loader.id_field] == "w1")
    w1["_relations"]["category"][0]["name"] = "changed"

    second = await client.query("workitems").include("category").get()
    w1 = next(r for r in second.data if r[client.loader.id_field] == "w1")
    assert w1["_relations"]["category"][0]["name"] == "Design"


async def test_shared_cache_keeps_stores_apart(
    json_loader_factory, sqlite_loader_factory, cache, config
):
    json_client = ContentrainClient(json_loader_factory(), config=config, cache=cache)
    sqlite_client = ContentrainClient(sqlite_loader_factory(), config=config, cache=cache)

    from_json = await json_client.query("faqitems").get()
    from_sqlite = await sqlite_client.query("faqitems").get()

    assert "ID" in from_json.data[0]
    assert "id" in from_sqlite.data[0]
    assert cache.stats()["size"] == 2
    assert cache.stats()["hits"] == 0


async def test_loaders_over_the_same_content_share_entries(json_loader_factory, cache, config):
    first = ContentrainClient(json_loader_factory(), config=config, cache=cache)
    second = ContentrainClient(json_loader_factory(), config=config, cache=cache)

    await first.query("faqitems").get()
    await second.query("faqitems").get()
    assert cache.stats()["hits"] == 1


def test_default_cache_is_shared_between_clients(loader):
    assert ContentrainClient(loader).cache is get_default_cache()
    assert ContentrainClient(loader).cache is ContentrainClient(loader).cache


def test_custom_capacity_gets_its_own_cache(loader):
    client = ContentrainClient(loader, config=ContentrainConfig(max_cache_entries=10))
    assert isinstance(client.cache, CacheManager)
    assert client.cache is not get_default_cache()
    assert client.cache.max_entries == 10


async def test_list_models_and_locales(client):
    assert sorted(await client.list_models()) == [
        "authors",
        "faqitems",
        "services",
        "workcategories",
        "workitems",
    ]
    assert "tr" in await client.get_locales("services")
