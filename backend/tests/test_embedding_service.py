import pytest

from embedstore.core.errors import (
    EmbeddingGenerationError,
    PartialBatchError,
    TokenBudgetExceeded,
    ValidationError,
)
from embedstore.db.session import Backend
from embedstore.services import EmbeddingRepository, EmbeddingService

ORIGIN = "0b8f6d3e-7c1a-4f52-9e0d-3a6b5c4d2e1f"


def _service(storage, provider, **kwargs) -> EmbeddingService:
    return EmbeddingService(EmbeddingRepository(storage, resource="embeddings"), provider, **kwargs)


def _item(content: str, **overrides):
    item = {"content": content, "content_type": "document", "origin_id": ORIGIN}
    item.update(overrides)
    return item


def _leading_component(params) -> float:
    return float(params["embedding"][1:].split(",", 1)[0])


@pytest.mark.asyncio
async def test_add_embeds_content_and_stores_it(recording_storage, fake_provider):
    storage = recording_storage(Backend.SQLITE)
    service = _service(storage, fake_provider)

    stored = await service.add("hello", "document", ORIGIN, "intro", {"lang": "en"})

    assert fake_provider.calls == [{"texts": "hello", "model": "text-embedding-3-small", "dimensions": 512}]
    (params,) = storage.last.inserts
    assert params["embedding"].startswith("[5.0,1.0,0.0")
    assert params["meta"] == '{"lang": "en"}'
    assert stored.origin_id == ORIGIN
    assert stored.context_id == "intro"


@pytest.mark.asyncio
async def test_add_validates_before_calling_provider(recording_storage, fake_provider):
    storage = recording_storage()
    service = _service(storage, fake_provider)

    with pytest.raises(ValidationError, match="Content type is required"):
        await service.add("hello", "", ORIGIN)
    assert fake_provider.calls == []
    assert storage.handles == []


@pytest.mark.asyncio
async def test_add_reports_provider_failure_without_writing(recording_storage, make_provider):
    storage = recording_storage()
    provider = make_provider(fail_on_call=1)
    service = _service(storage, provider)

    with pytest.raises(EmbeddingGenerationError, match="upstream unavailable"):
        await service.add("hello", "document", ORIGIN)
    assert storage.handles == []


@pytest.mark.asyncio
async def test_small_batch_uses_one_provider_call_and_one_transaction(recording_storage, fake_provider):
    storage = recording_storage()
    service = _service(storage, fake_provider)

    result = await service.add_batch([_item("alpha"), _item("beta", context_id="b"), _item("gamma")])

    assert len(fake_provider.calls) == 1
    assert fake_provider.calls[0]["texts"] == ["alpha", "beta", "gamma"]
    assert result.count == 3
    assert len(storage.handles) == 1
    assert storage.last.events == ["begin", "execute", "execute", "execute", "commit"]
    assert [_leading_component(params) for params in storage.last.inserts] == [5.0, 4.0, 5.0]
    assert [entry.context_id for entry in result.items] == [None, "b", None]


@pytest.mark.asyncio
async def test_batch_over_token_ceiling_is_split_and_processed_in_order(recording_storage, fake_provider):
    storage = recording_storage()
    service = _service(storage, fake_provider)
    contents = ["a" * 12000, "b" * 11996, "c" * 11992]  # 3000 + 2999 + 2998 tokens

    result = await service.add_batch([_item(content) for content in contents])

    assert len(fake_provider.calls) == 2
    assert fake_provider.calls[0]["texts"] == contents[:2]
    assert fake_provider.calls[1]["texts"] == contents[2:]
    assert result.count == 3
    assert len(result.items) == 3
    assert len(storage.handles) == 2
    written = [params for handle in storage.handles for params in handle.inserts]
    assert [params["content"] for params in written] == contents
    assert [_leading_component(params) for params in written] == [12000.0, 11996.0, 11992.0]
    assert [entry.entry_id for entry in result.items] == [params["entry_id"] for params in written]


@pytest.mark.asyncio
async def test_later_sub_batch_failure_reports_committed_entries(recording_storage, make_provider, caplog):
    storage = recording_storage()
    provider = make_provider(fail_on_call=2)
    service = _service(storage, provider)
    contents = ["a" * 12000, "b" * 12000, "c" * 12000]

    with pytest.raises(PartialBatchError) as excinfo:
        await service.add_batch([_item(content) for content in contents])

    error = excinfo.value
    assert error.committed.count == 2
    assert [entry.entry_id for entry in error.committed.items] == [p["entry_id"] for p in storage.handles[0].inserts]
    assert error.batch_index == 1
    assert error.batch_count == 2
    assert isinstance(error.__cause__, EmbeddingGenerationError)
    assert len(storage.handles) == 1
    assert any("remain stored" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_first_sub_batch_failure_propagates_original_error(recording_storage, make_provider):
    storage = recording_storage()
    provider = make_provider(fail_on_call=1)
    service = _service(storage, provider)

    with pytest.raises(EmbeddingGenerationError):
        await service.add_batch([_item("a" * 12000), _item("b" * 12000), _item("c" * 12000)])
    assert storage.handles == []


@pytest.mark.asyncio
async def test_batch_validation_reports_one_based_position(recording_storage, fake_provider):
    storage = recording_storage()
    service = _service(storage, fake_provider)

    with pytest.raises(ValidationError, match="Item 2: Origin ID is required"):
        await service.add_batch([_item("alpha"), _item("beta", origin_id="")])
    with pytest.raises(ValidationError, match="Batch is empty"):
        await service.add_batch([])
    assert fake_provider.calls == []
    assert storage.handles == []


@pytest.mark.asyncio
async def test_single_item_over_ceiling_raises_token_budget_error(recording_storage, fake_provider):
    storage = recording_storage()
    service = _service(storage, fake_provider)

    with pytest.raises(TokenBudgetExceeded) as excinfo:
        await service.add_batch([_item("x" * 40000), _item("short")])

    assert excinfo.value.estimated_tokens == 10000
    assert excinfo.value.max_tokens == 8000
    assert fake_provider.calls == []


@pytest.mark.asyncio
async def test_token_ceiling_is_configurable(recording_storage, fake_provider):
    storage = recording_storage()
    service = _service(storage, fake_provider, max_tokens_per_request=2)

    result = await service.add_batch([_item("abcd"), _item("efgh"), _item("ijkl")])

    assert [call["texts"] for call in fake_provider.calls] == [["abcd", "efgh"], ["ijkl"]]
    assert result.count == 3


@pytest.mark.asyncio
async def test_vector_count_mismatch_is_a_generation_error(recording_storage, make_provider):
    storage = recording_storage()
    provider = make_provider(drop_last=True)
    service = _service(storage, provider)

    with pytest.raises(EmbeddingGenerationError, match="expected 2 vectors, got 1"):
        await service.add_batch([_item("alpha"), _item("beta")])
    assert storage.handles == []


@pytest.mark.asyncio
async def test_search_embeds_query_and_applies_default_limit(recording_storage, fake_provider):
    storage = recording_storage(Backend.POSTGRES)
    service = _service(storage, fake_provider)

    await service.search("vector databases", context_id="section-2")

    assert fake_provider.calls[0]["texts"] == "vector databases"
    sql, params = storage.last.statements[0]
    assert params["limit"] == 10
    assert params["context_id"] == "section-2"
    assert params["query"].startswith("[16.0,1.0")


@pytest.mark.asyncio
async def test_search_rejects_empty_query(recording_storage, fake_provider):
    service = _service(recording_storage(), fake_provider)

    with pytest.raises(ValidationError):
        await service.search("")
    assert fake_provider.calls == []


@pytest.mark.asyncio
async def test_find_by_type_filters_content_type_with_default_limit(recording_storage, fake_provider):
    storage = recording_storage(Backend.POSTGRES)
    service = _service(storage, fake_provider)

    await service.find_by_type("how do I search", "faq")

    sql, params = storage.last.statements[0]
    assert "content_type = :content_type" in sql
    assert params["content_type"] == "faq"
    assert params["limit"] == 10


@pytest.mark.asyncio
async def test_find_by_origin_filters_origin_with_smaller_default_limit(recording_storage, fake_provider):
    storage = recording_storage(Backend.SQLITE)
    service = _service(storage, fake_provider)

    await service.find_by_origin("summary", ORIGIN)
    await service.find_by_origin("summary", ORIGIN, limit=2)

    first_sql, first_params = storage.handles[0].statements[0]
    _, second_params = storage.handles[1].statements[0]
    assert "origin_id_aux IN (:origin_id_0)" in first_sql
    assert first_params["origin_id_0"] == ORIGIN
    assert first_params["k"] == 5
    assert second_params["k"] == 2


@pytest.mark.asyncio
async def test_find_helpers_require_their_filter(recording_storage, fake_provider):
    service = _service(recording_storage(), fake_provider)

    with pytest.raises(ValidationError):
        await service.find_by_type("query", "")
    with pytest.raises(ValidationError):
        await service.find_by_origin("query", "")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "call",
    [
        lambda service: service.search("q", limit=0),
        lambda service: service.find_by_type("q", "faq", limit=0),
        lambda service: service.find_by_origin("q", ORIGIN, limit=0),
    ],
)
async def test_zero_limit_is_rejected_not_defaulted(recording_storage, fake_provider, call):
    storage = recording_storage(Backend.POSTGRES)
    service = _service(storage, fake_provider)

    with pytest.raises(ValidationError, match="limit must be a positive integer"):
        await call(service)
    assert storage.handles == []
