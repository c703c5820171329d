import pytest
import time_machine

from swrproxy import (
    AsyncInMemoryStorage,
    AsyncSWRCache,
    CacheOptions,
    Headers,
    ImmediateScheduler,
    OriginError,
    Response,
    generate_key,
)

from tests.conftest import FrozenClock, MockOrigin, create_request, create_response

NOW = 1_700_000_000
NOW_MS = NOW * 1000


def make_cache(origin, storage=None, options=None, clock=None):
    scheduler = ImmediateScheduler()
    cache = AsyncSWRCache(
        request_sender=origin,
        scheduler=scheduler,
        storage=storage if storage is not None else AsyncInMemoryStorage(),
        options=options,
        clock=clock,
    )
    return cache, scheduler


async def stored_entry(cache: AsyncSWRCache, request=None):
    request = request or create_request()
    return await cache.storage.get(cache.get_key_for_request(request))


@pytest.mark.anyio
async def test_miss_returns_origin_response(origin: MockOrigin):
    origin.add_responses([create_response(headers={"Cache-Control": "s-maxage=60, stale-while-revalidate=30"})])
    cache, scheduler = make_cache(origin, clock=FrozenClock(NOW_MS))

    response = await cache.handle_request(create_request())

    assert response.status_code == 200
    assert response.content == b'{"data": {"items": []}}'
    assert response.headers["x-edge-cache-status"] == "MISS"
    assert response.headers["x-edge-cache-stale-at"] == str(NOW_MS + 60_000)
    assert response.headers["x-edge-origin-cache-control"] == "s-maxage=60, stale-while-revalidate=30"
    assert response.headers.get_list("cache-control") == ["public, max-age=0, must-revalidate"]


@pytest.mark.anyio
async def test_miss_busts_intermediate_caches(origin: MockOrigin):
    origin.add_responses([create_response()])
    cache, _ = make_cache(origin, clock=FrozenClock(NOW_MS))

    await cache.handle_request(create_request(url="https://example.com/graphql"))

    assert origin.requests[0].url == f"https://example.com/graphql?t={NOW_MS}"
    assert origin.requests[0].content == b'{"query": "{ items }"}'


@pytest.mark.anyio
async def test_miss_stores_entry_in_the_background(origin: MockOrigin):
    origin.add_responses(
        [
            create_response(
                headers={
                    "Cache-Control": "s-maxage=60, stale-while-revalidate=30, max-age=10",
                    "Set-Cookie": "session=1",
                    "Vary": "Accept",
                    "CF-Cache-Status": "DYNAMIC",
                }
            )
        ]
    )
    cache, scheduler = make_cache(origin, clock=FrozenClock(NOW_MS))

    response = await cache.handle_request(create_request())

    assert response.headers["set-cookie"] == "session=1"
    assert scheduler.pending == 1
    assert await stored_entry(cache) is None

    await scheduler.run_pending()

    entry = await stored_entry(cache)
    assert entry is not None
    assert entry.headers["x-edge-cache-status"] == "HIT"
    assert entry.headers["cache-control"] == "max-age=90"
    assert entry.headers["x-client-cache-control"] == "max-age=10"
    assert entry.headers["x-edge-cache-stale-at"] == str(NOW_MS + 60_000)
    assert "set-cookie" not in entry.headers
    assert "vary" not in entry.headers
    assert "cf-cache-status" not in entry.headers


@pytest.mark.anyio
async def test_origin_cache_status_is_kept_on_stored_entries(origin: MockOrigin):
    origin.add_responses([create_response(headers={"Cache-Control": "s-maxage=60", "CF-Cache-Status": "DYNAMIC"})])
    cache, scheduler = make_cache(origin, clock=FrozenClock(NOW_MS))

    miss = await cache.handle_request(create_request())
    await scheduler.run_pending()
    hit = await cache.handle_request(create_request())

    assert miss.headers["x-origin-cf-cache-status"] == "DYNAMIC"
    assert hit.headers["x-edge-cache-status"] == "HIT"
    assert hit.headers["x-origin-cf-cache-status"] == "DYNAMIC"
    assert "cf-cache-status" not in hit.headers

    entry = await stored_entry(cache)
    assert entry is not None
    assert entry.headers.get_list("x-origin-cf-cache-status") == ["DYNAMIC"]


@pytest.mark.anyio
async def test_origin_without_cache_status(origin: MockOrigin):
    origin.add_responses([create_response(headers={"Cache-Control": "s-maxage=60"})])
    cache, scheduler = make_cache(origin, clock=FrozenClock(NOW_MS))

    miss = await cache.handle_request(create_request())
    await scheduler.run_pending()

    entry = await stored_entry(cache)
    assert entry is not None
    assert "x-origin-cf-cache-status" not in miss.headers
    assert "x-origin-cf-cache-status" not in entry.headers


@pytest.mark.anyio
async def test_hit_is_served_from_storage(origin: MockOrigin):
    origin.add_responses([create_response(headers={"Cache-Control": "s-maxage=60, max-age=5"})])
    cache, scheduler = make_cache(origin, clock=FrozenClock(NOW_MS))

    await cache.handle_request(create_request())
    await scheduler.run_pending()

    response = await cache.handle_request(create_request())

    assert len(origin.requests) == 1
    assert response.headers["x-edge-cache-status"] == "HIT"
    assert response.headers.get_list("cache-control") == ["max-age=5"]
    assert response.content == b'{"data": {"items": []}}'
    assert scheduler.pending == 0


@pytest.mark.anyio
async def test_different_bodies_use_different_entries(origin: MockOrigin):
    origin.add_responses(
        [
            create_response(headers={"Cache-Control": "s-maxage=60"}, content=b"a"),
            create_response(headers={"Cache-Control": "s-maxage=60"}, content=b"b"),
        ]
    )
    cache, scheduler = make_cache(origin, clock=FrozenClock(NOW_MS))

    await cache.handle_request(create_request(content=b'{"query": "a"}'))
    await scheduler.run_pending()
    response = await cache.handle_request(create_request(content=b'{"query": "b"}'))

    assert response.headers["x-edge-cache-status"] == "MISS"
    assert response.content == b"b"
    assert len(origin.requests) == 2


@pytest.mark.anyio
@pytest.mark.parametrize(
    "response",
    [
        create_response(status_code=500, headers={"Cache-Control": "s-maxage=60"}),
        create_response(status_code=404, headers={"Cache-Control": "s-maxage=60"}),
        create_response(headers={}),
        create_response(headers={"Cache-Control": "max-age=60"}),
        create_response(headers={"Cache-Control": "s-maxage=0"}),
    ],
)
async def test_uncacheable_responses_are_never_stored(origin: MockOrigin, response: Response):
    origin.add_responses([response])
    cache, scheduler = make_cache(origin, clock=FrozenClock(NOW_MS))

    result = await cache.handle_request(create_request())

    assert result.status_code == response.status_code
    assert result.headers["x-edge-cache-status"] == "MISS"
    assert "x-edge-cache-stale-at" not in result.headers
    assert scheduler.pending == 0
    assert await stored_entry(cache) is None


@pytest.mark.anyio
async def test_uncacheable_response_keeps_origin_cache_control(origin: MockOrigin):
    origin.add_responses([create_response(status_code=500, headers={"Cache-Control": "no-store"})])
    cache, _ = make_cache(origin, clock=FrozenClock(NOW_MS))

    result = await cache.handle_request(create_request())

    assert result.headers["cache-control"] == "no-store"
    assert result.headers["x-edge-origin-cache-control"] == "no-store"


@pytest.mark.anyio
async def test_miss_propagates_origin_errors(origin: MockOrigin):
    origin.add_responses([OriginError("unreachable")])
    cache, scheduler = make_cache(origin)

    with pytest.raises(OriginError):
        await cache.handle_request(create_request())

    assert scheduler.pending == 0


@pytest.mark.anyio
async def test_stale_entry_is_served_and_revalidated(origin: MockOrigin):
    origin.add_responses([create_response(headers={"Cache-Control": "s-maxage=60, stale-while-revalidate=30"})])
    clock = FrozenClock(NOW_MS)
    cache, scheduler = make_cache(origin, clock=clock)

    await cache.handle_request(create_request())
    await scheduler.run_pending()

    clock.current = NOW_MS + 60_000
    response = await cache.handle_request(create_request())
    assert response.headers["x-edge-cache-status"] == "HIT"
    assert scheduler.pending == 0

    clock.current = NOW_MS + 61_000
    response = await cache.handle_request(create_request())

    assert response.headers["x-edge-cache-status"] == "REVALIDATING"
    assert response.content == b'{"data": {"items": []}}'
    assert len(origin.requests) == 1
    assert scheduler.pending == 1

    entry = await stored_entry(cache)
    assert entry is not None
    assert entry.headers["x-edge-cache-status"] == "REVALIDATING"


@pytest.mark.anyio
async def test_at_most_one_revalidation_is_triggered(origin: MockOrigin):
    origin.add_responses([create_response(headers={"Cache-Control": "s-maxage=60"})])
    clock = FrozenClock(NOW_MS)
    cache, scheduler = make_cache(origin, clock=clock)

    await cache.handle_request(create_request())
    await scheduler.run_pending()

    clock.current = NOW_MS + 61_000
    await cache.handle_request(create_request())
    for _ in range(3):
        response = await cache.handle_request(create_request())
        assert response.headers["x-edge-cache-status"] == "REVALIDATING"

    assert scheduler.pending == 1


@pytest.mark.anyio
async def test_background_revalidation_replaces_entry(origin: MockOrigin):
    origin.add_responses(
        [
            create_response(headers={"Cache-Control": "s-maxage=60"}, content=b"old"),
            create_response(headers={"Cache-Control": "s-maxage=60"}, content=b"new"),
        ]
    )
    clock = FrozenClock(NOW_MS)
    cache, scheduler = make_cache(origin, clock=clock)

    await cache.handle_request(create_request())
    await scheduler.run_pending()

    clock.current = NOW_MS + 61_000
    await cache.handle_request(create_request())
    assert await scheduler.run_pending() == 1

    assert len(origin.requests) == 2
    assert origin.requests[1].url == f"https://example.com/graphql?t={NOW_MS + 61_000}"

    entry = await stored_entry(cache)
    assert entry is not None
    assert entry.content == b"new"
    assert entry.headers["x-edge-cache-status"] == "HIT"
    assert entry.headers["x-edge-cache-stale-at"] == str(NOW_MS + 121_000)

    response = await cache.handle_request(create_request())
    assert response.headers["x-edge-cache-status"] == "HIT"
    assert response.content == b"new"


@pytest.mark.anyio
async def test_failed_revalidation_leaves_entry_revalidating(origin: MockOrigin):
    origin.add_responses(
        [
            create_response(headers={"Cache-Control": "s-maxage=60"}, content=b"old"),
            OriginError("unreachable"),
        ]
    )
    clock = FrozenClock(NOW_MS)
    cache, scheduler = make_cache(origin, clock=clock)

    await cache.handle_request(create_request())
    await scheduler.run_pending()

    clock.current = NOW_MS + 61_000
    await cache.handle_request(create_request())
    await scheduler.run_pending()

    clock.current = NOW_MS + 3_600_000
    response = await cache.handle_request(create_request())

    assert response.headers["x-edge-cache-status"] == "REVALIDATING"
    assert response.content == b"old"
    assert scheduler.pending == 0


@pytest.mark.anyio
async def test_uncacheable_revalidation_keeps_previous_entry(origin: MockOrigin):
    origin.add_responses(
        [
            create_response(headers={"Cache-Control": "s-maxage=60"}, content=b"old"),
            create_response(status_code=500, content=b"error"),
        ]
    )
    clock = FrozenClock(NOW_MS)
    cache, scheduler = make_cache(origin, clock=clock)

    await cache.handle_request(create_request())
    await scheduler.run_pending()

    clock.current = NOW_MS + 61_000
    await cache.handle_request(create_request())
    await scheduler.run_pending()

    entry = await stored_entry(cache)
    assert entry is not None
    assert entry.content == b"old"
    assert entry.headers["x-edge-cache-status"] == "REVALIDATING"


@pytest.mark.anyio
async def test_revalidation_timeout_allows_another_attempt(origin: MockOrigin):
    origin.add_responses([create_response(headers={"Cache-Control": "s-maxage=60"})])
    clock = FrozenClock(NOW_MS)
    cache, scheduler = make_cache(origin, options=CacheOptions(revalidation_timeout=10), clock=clock)

    await cache.handle_request(create_request())
    await scheduler.run_pending()

    clock.current = NOW_MS + 61_000
    await cache.handle_request(create_request())
    assert scheduler.pending == 1

    clock.current = NOW_MS + 70_000
    await cache.handle_request(create_request())
    assert scheduler.pending == 1

    clock.current = NOW_MS + 70_001
    response = await cache.handle_request(create_request())
    assert response.headers["x-edge-cache-status"] == "REVALIDATING"
    assert scheduler.pending == 2


@pytest.mark.anyio
@pytest.mark.parametrize("stale_at", [None, "not-a-number"])
async def test_entry_without_usable_stale_at_is_revalidated(origin: MockOrigin, stale_at):
    storage = AsyncInMemoryStorage()
    cache, scheduler = make_cache(origin, storage=storage, clock=FrozenClock(NOW_MS))
    headers = Headers({"x-edge-cache-status": "HIT", "x-client-cache-control": "max-age=5"})
    if stale_at is not None:
        headers["x-edge-cache-stale-at"] = stale_at
    await storage.put(cache.get_key_for_request(create_request()), Response(200, headers, b"cached"))

    response = await cache.handle_request(create_request())

    assert response.headers["x-edge-cache-status"] == "REVALIDATING"
    assert response.headers["cache-control"] == "max-age=5"
    assert response.content == b"cached"
    assert scheduler.pending == 1


@pytest.mark.anyio
async def test_entry_without_client_cache_control(origin: MockOrigin):
    storage = AsyncInMemoryStorage()
    cache, _ = make_cache(origin, storage=storage, clock=FrozenClock(NOW_MS))
    headers = Headers(
        {
            "x-edge-cache-status": "HIT",
            "x-edge-cache-stale-at": str(NOW_MS + 1000),
            "cache-control": "max-age=90",
        }
    )
    await storage.put(cache.get_key_for_request(create_request()), Response(200, headers, b"cached"))

    response = await cache.handle_request(create_request())

    assert "cache-control" not in response.headers


def test_should_revalidate():
    cache, _ = make_cache(MockOrigin(), clock=FrozenClock(NOW_MS))

    def entry(**headers):
        return Response(200, Headers(headers))

    assert not cache.should_revalidate(entry(**{"x-edge-cache-stale-at": str(NOW_MS)}))
    assert cache.should_revalidate(entry(**{"x-edge-cache-stale-at": str(NOW_MS - 1)}))
    assert cache.should_revalidate(entry())
    assert not cache.should_revalidate(
        entry(**{"x-edge-cache-status": "REVALIDATING", "x-edge-cache-stale-at": str(NOW_MS - 1)})
    )
    assert not cache.should_revalidate(entry(**{"x-edge-cache-status": "REVALIDATING"}))


def test_custom_key_hasher():
    cache = AsyncSWRCache(
        request_sender=MockOrigin(),
        scheduler=ImmediateScheduler(),
        key_hasher=lambda body: str(len(body)),
    )

    assert cache.get_key_for_request(create_request(content=b"abc")) == "https://example.com/graphql?cache-key=3"
    assert AsyncSWRCache(MockOrigin(), ImmediateScheduler()).get_key_for_request(
        create_request(content=b"abc")
    ) == generate_key("https://example.com/graphql", b"abc")


@pytest.mark.anyio
async def test_default_clock_follows_wall_time(origin: MockOrigin):
    origin.add_responses(
        [
            create_response(headers={"Cache-Control": "s-maxage=60"}, content=b"old"),
            create_response(headers={"Cache-Control": "s-maxage=60"}, content=b"new"),
        ]
    )
    cache, scheduler = make_cache(origin)

    with time_machine.travel(NOW, tick=False) as traveller:
        response = await cache.handle_request(create_request())
        assert response.headers["x-edge-cache-stale-at"] == str(NOW_MS + 60_000)
        await scheduler.run_pending()

        traveller.shift(61)
        response = await cache.handle_request(create_request())
        assert response.headers["x-edge-cache-status"] == "REVALIDATING"
        await scheduler.run_pending()

        response = await cache.handle_request(create_request())
        assert response.headers["x-edge-cache-status"] == "HIT"
        assert response.content == b"new"


@pytest.mark.anyio
async def test_miss_hit_revalidating_sequence(origin: MockOrigin):
    origin.add_responses(
        [
            create_response(headers={"Cache-Control": "s-maxage=10"}, content=b"B1"),
            create_response(headers={"Cache-Control": "s-maxage=10"}, content=b"B1"),
        ]
    )
    clock = FrozenClock(NOW_MS)
    cache, scheduler = make_cache(origin, clock=clock)
    request = create_request(content=b"B1")

    first = await cache.handle_request(request)
    await scheduler.run_pending()
    second = await cache.handle_request(request)

    assert first.headers["x-edge-cache-status"] == "MISS"
    assert first.headers["cache-control"] == "public, max-age=0, must-revalidate"
    assert first.content == b"B1"
    assert second.headers["x-edge-cache-status"] == "HIT"
    assert second.content == b"B1"

    clock.current = NOW_MS + 10_001
    third = await cache.handle_request(request)

    assert third.headers["x-edge-cache-status"] == "REVALIDATING"
    assert third.content == b"B1"

    await scheduler.run_pending()
    entry = await stored_entry(cache, request)
    assert entry is not None
    assert int(entry.headers["x-edge-cache-stale-at"]) == NOW_MS + 20_001
