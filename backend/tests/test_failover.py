"""
Endpoint Failover and Fetch Client Tests
Candidate ordering, failure mapping and aggregate failures

Run: python -m pytest backend/tests/test_failover.py -v
"""

import asyncio
import time

import httpx
import pytest
import pytest_asyncio

from conftest import POOLS_PRIMARY, POOLS_SECONDARY, PRICES_PRIMARY, PRICES_SECONDARY
from gateway import (
    AggregateUpstreamFailure,
    EndpointFailoverFetcher,
    FetchClient,
    UpstreamCandidate,
    UpstreamConnectionError,
    UpstreamHTTPError,
    UpstreamPayloadError,
    UpstreamTimeout,
    extract_token_price,
    normalize_pool_listing,
)


def json_response(body, status=200):
    return lambda request: httpx.Response(status, json=body)


def raise_timeout(request):
    raise httpx.ReadTimeout("read timed out", request=request)


@pytest_asyncio.fixture
async def client(upstream):
    client = FetchClient(user_agent="GatewayTests/1.0", transport=upstream.transport)
    yield client
    await client.close()


@pytest.fixture
def fetcher(client):
    return EndpointFailoverFetcher(client)


POOL_CANDIDATES = [
    UpstreamCandidate(POOLS_PRIMARY, 0),
    UpstreamCandidate(POOLS_SECONDARY, 1),
]


# =============================================================================
# TEST: Fetch client
# =============================================================================

class TestFetchClient:

    @pytest.mark.asyncio
    async def test_returns_decoded_json(self, client, upstream):
        upstream.route(POOLS_PRIMARY, json_response([{"ammId": "x"}]))

        body = await client.request("GET", POOLS_PRIMARY)

        assert body == [{"ammId": "x"}]

    @pytest.mark.asyncio
    async def test_sends_user_agent(self, client, upstream):
        seen = {}

        def handler(request):
            seen["ua"] = request.headers.get("User-Agent")
            return httpx.Response(200, json={})

        upstream.route(POOLS_PRIMARY, handler)
        await client.request("GET", POOLS_PRIMARY)

        assert seen["ua"] == "GatewayTests/1.0"

    @pytest.mark.asyncio
    async def test_non_2xx_maps_to_http_error(self, client, upstream):
        upstream.route(POOLS_PRIMARY, json_response({"error": "busy"}, status=429))

        with pytest.raises(UpstreamHTTPError) as exc_info:
            await client.request("GET", POOLS_PRIMARY)

        assert exc_info.value.upstream_status == 429
        assert exc_info.value.reason == "HTTP 429"

    @pytest.mark.asyncio
    async def test_timeout_maps_to_upstream_timeout(self, client, upstream):
        upstream.route(POOLS_PRIMARY, raise_timeout)

        with pytest.raises(UpstreamTimeout) as exc_info:
            await client.request("GET", POOLS_PRIMARY, timeout=2.0)

        assert exc_info.value.timeout == 2.0

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_connection_error(self, client, upstream):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        upstream.route(POOLS_PRIMARY, refuse)

        with pytest.raises(UpstreamConnectionError):
            await client.request("GET", POOLS_PRIMARY)

    @pytest.mark.asyncio
    async def test_non_json_body_maps_to_payload_error(self, client, upstream):
        upstream.route(POOLS_PRIMARY, lambda request: httpx.Response(200, text="<html>maintenance</html>"))

        with pytest.raises(UpstreamPayloadError):
            await client.request("GET", POOLS_PRIMARY)

    @pytest.mark.asyncio
    async def test_timeout_bounds_a_trickling_body(self):
        """Headers arrive at once, then one byte every 100ms: no single read ever times out"""

        async def trickle(reader, writer):
            await reader.readuntil(b"\r\n\r\n")
            writer.write(b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\nContent-Length: 40\r\n\r\n")
            try:
                for _ in range(40):
                    writer.write(b" ")
                    await writer.drain()
                    await asyncio.sleep(0.1)
            except ConnectionError:
                pass
            finally:
                writer.close()

        server = await asyncio.start_server(trickle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        slow_client = FetchClient()

        started = time.monotonic()
        try:
            with pytest.raises(UpstreamTimeout) as exc_info:
                await slow_client.request("GET", f"http://127.0.0.1:{port}/pairs", timeout=0.5)
        finally:
            elapsed = time.monotonic() - started
            await slow_client.close()
            server.close()
            await server.wait_closed()

        assert exc_info.value.timeout == 0.5
        assert elapsed < 2.0


# =============================================================================
# TEST: Failover ordering
# =============================================================================

class TestFailoverOrdering:

    @pytest.mark.asyncio
    async def test_first_success_wins(self, fetcher, upstream, raydium_pairs):
        upstream.route(POOLS_PRIMARY, json_response(raydium_pairs))
        upstream.route(POOLS_SECONDARY, json_response({}))

        result = await fetcher.fetch(POOL_CANDIDATES, 5.0, resource="pool-listing")

        assert result.candidate.url == POOLS_PRIMARY
        assert result.attempts == 1
        assert upstream.count(POOLS_SECONDARY) == 0

    @pytest.mark.asyncio
    async def test_falls_through_to_next_candidate(self, fetcher, upstream, raydium_v3_listing):
        upstream.route(POOLS_PRIMARY, json_response({"error": "down"}, status=503))
        upstream.route(POOLS_SECONDARY, json_response(raydium_v3_listing))

        result = await fetcher.fetch(
            POOL_CANDIDATES, 5.0, resource="pool-listing", parse=normalize_pool_listing
        )

        assert result.candidate.url == POOLS_SECONDARY
        assert result.attempts == 2
        assert result.payload[0]["name"] == "WSOL/USDC"
        assert upstream.count(POOLS_PRIMARY) == 1
        assert upstream.count(POOLS_SECONDARY) == 1
        assert fetcher.get_stats()["failovers"] == 1

    @pytest.mark.asyncio
    async def test_priority_orders_candidates(self, fetcher, upstream, raydium_pairs):
        upstream.route(POOLS_PRIMARY, json_response(raydium_pairs))
        upstream.route(POOLS_SECONDARY, json_response(raydium_pairs))

        reversed_priorities = [
            UpstreamCandidate(POOLS_PRIMARY, 5),
            UpstreamCandidate(POOLS_SECONDARY, 1),
        ]
        result = await fetcher.fetch(reversed_priorities, 5.0)

        assert result.candidate.url == POOLS_SECONDARY
        assert upstream.count(POOLS_PRIMARY) == 0

    @pytest.mark.asyncio
    async def test_timeout_advances_to_next_candidate(self, fetcher, upstream, raydium_pairs):
        upstream.route(POOLS_PRIMARY, raise_timeout)
        upstream.route(POOLS_SECONDARY, json_response(raydium_pairs))

        result = await fetcher.fetch(POOL_CANDIDATES, 1.0, parse=normalize_pool_listing)

        assert result.candidate.url == POOLS_SECONDARY
        assert result.payload[0]["name"] == "SOL-USDC"

    @pytest.mark.asyncio
    async def test_parser_rejection_advances(self, fetcher, upstream, raydium_pairs):
        # 200 with an unusable body
        upstream.route(POOLS_PRIMARY, json_response({"unexpected": True}))
        upstream.route(POOLS_SECONDARY, json_response(raydium_pairs))

        result = await fetcher.fetch(POOL_CANDIDATES, 5.0, parse=normalize_pool_listing)

        assert result.candidate.url == POOLS_SECONDARY

    @pytest.mark.asyncio
    async def test_url_params_are_rendered(self, fetcher, upstream, test_mints):
        sol = test_mints["SOL"]
        upstream.route(
            "https://prices-primary.test/",
            json_response({"data": {sol: {"id": sol, "price": "147.25"}}}),
        )

        result = await fetcher.fetch(
            [UpstreamCandidate(PRICES_PRIMARY), UpstreamCandidate(PRICES_SECONDARY, 1)],
            5.0,
            url_params={"mint": sol},
            parse=lambda body: extract_token_price(body, sol),
        )

        assert result.payload == 147.25
        assert upstream.calls == [PRICES_PRIMARY.format(mint=sol)]


# =============================================================================
# TEST: Aggregate failure
# =============================================================================

class TestAggregateFailure:

    @pytest.mark.asyncio
    async def test_all_candidates_fail(self, fetcher, upstream):
        upstream.route(POOLS_PRIMARY, json_response({}, status=500))
        upstream.route(POOLS_SECONDARY, raise_timeout)

        with pytest.raises(AggregateUpstreamFailure) as exc_info:
            await fetcher.fetch(POOL_CANDIDATES, 3.0, resource="pool-listing")

        error = exc_info.value
        assert error.resource == "pool-listing"
        assert [url for url, _ in error.failures] == [POOLS_PRIMARY, POOLS_SECONDARY]
        assert error.failures[0][1] == "HTTP 500"
        assert "timed out" in error.failures[1][1]
        assert error.status_code == 502
        assert fetcher.get_stats()["aggregate_failures"] == 1

    @pytest.mark.asyncio
    async def test_each_candidate_tried_once(self, fetcher, upstream):
        upstream.route(POOLS_PRIMARY, json_response({}, status=502))
        upstream.route(POOLS_SECONDARY, json_response({}, status=502))

        with pytest.raises(AggregateUpstreamFailure):
            await fetcher.fetch(POOL_CANDIDATES, 3.0)

        assert upstream.count(POOLS_PRIMARY) == 1
        assert upstream.count(POOLS_SECONDARY) == 1

    @pytest.mark.asyncio
    async def test_empty_candidate_list(self, fetcher):
        with pytest.raises(AggregateUpstreamFailure) as exc_info:
            await fetcher.fetch([], 3.0, resource="token-price")

        assert exc_info.value.failures == []


# =============================================================================
# TEST: URL templates
# =============================================================================

class TestUrlTemplates:

    def test_params_are_quoted(self):
        candidate = UpstreamCandidate("https://prices.test/price?ids={mint}")

        url = candidate.render({"mint": "So11&ids=evil&debug=1"})

        assert url == "https://prices.test/price?ids=So11%26ids%3Devil%26debug%3D1"

    @pytest.mark.asyncio
    async def test_injected_params_never_reach_upstream(self, fetcher, upstream):
        seen = {}

        def handler(request):
            seen["ids"] = request.url.params.get_list("ids")
            seen["debug"] = request.url.params.get("debug")
            return httpx.Response(200, json={})

        upstream.route("https://prices-primary.test/", handler)

        await fetcher.fetch(
            [UpstreamCandidate(PRICES_PRIMARY)],
            5.0,
            url_params={"mint": "abc&ids=evil&debug=1"},
        )

        assert seen["ids"] == ["abc&ids=evil&debug=1"]
        assert seen["debug"] is None

    @pytest.mark.asyncio
    async def test_bad_template_counts_as_candidate_failure(self, fetcher, upstream, raydium_pairs):
        upstream.route(POOLS_SECONDARY, json_response(raydium_pairs))
        candidates = [
            UpstreamCandidate("https://pools-primary.test/{network}/pairs", 0),
            UpstreamCandidate(POOLS_SECONDARY, 1),
        ]

        result = await fetcher.fetch(candidates, 5.0, url_params={"mint": "x"})

        assert result.candidate.url == POOLS_SECONDARY
        assert result.attempts == 2
        assert upstream.count("https://pools-primary.test/") == 0

    @pytest.mark.asyncio
    async def test_only_bad_templates_is_aggregate_failure(self, fetcher):
        with pytest.raises(AggregateUpstreamFailure) as exc_info:
            await fetcher.fetch(
                [UpstreamCandidate("https://rpc.test/{cluster}")],
                5.0,
                resource="rpc-passthrough",
                url_params={"mint": "x"},
            )

        assert "bad url template" in exc_info.value.failures[0][1]
