import httpx
import pytest

from chat_completion_client.errors import TransportFailureError
from chat_completion_client.transport import RetryingTransport, create_fetch, parse_retry_after


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_parse_retry_after():
    assert parse_retry_after("12") == 12
    assert parse_retry_after(" 3 ") == 3
    assert parse_retry_after(None) is None
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None


@pytest.mark.asyncio
async def test_retries_429_honouring_retry_after_capped_by_max_delay():
    calls = {"n": 0}
    sleeps: list[float] = []

    def handler(_: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429, headers={"retry-after": "120"})
        return httpx.Response(200, text="ok")

    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    transport = create_fetch(retries=2, retry_delay=0.5, max_delay=5.0, client=_mock_client(handler), sleeper=record_sleep)
    async with transport.stream("POST", "https://example.test/chat/completions", content=b"{}") as resp:
        assert resp.status_code == 200
        assert (await resp.aread()) == b"ok"
    assert calls["n"] == 2
    assert sleeps == [5.0]


@pytest.mark.asyncio
async def test_exhausted_retries_yield_last_response():
    calls = {"n": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(503, text="overloaded")

    async def no_sleep(_: float) -> None:
        return None

    transport = RetryingTransport(client=_mock_client(handler), retries=2, retry_delay=0.1, sleeper=no_sleep)
    async with transport.stream("POST", "https://example.test/x") as resp:
        assert resp.status_code == 503
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    calls = {"n": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(401, json={"error": {"message": "bad key"}})

    transport = RetryingTransport(client=_mock_client(handler), retries=3)
    async with transport.stream("POST", "https://example.test/x") as resp:
        assert resp.status_code == 401
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_connection_errors_are_retried_then_wrapped():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("boom", request=request)

    async def no_sleep(_: float) -> None:
        return None

    transport = RetryingTransport(client=_mock_client(handler), retries=1, sleeper=no_sleep)
    with pytest.raises(TransportFailureError):
        async with transport.stream("POST", "https://example.test/x"):
            pass
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_timeout_then_success():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, text="ok")

    async def no_sleep(_: float) -> None:
        return None

    transport = RetryingTransport(client=_mock_client(handler), retries=1, sleeper=no_sleep)
    async with transport.stream("GET", "https://example.test/x") as resp:
        assert resp.status_code == 200


def test_backoff_is_exponential_and_capped():
    transport = RetryingTransport(client=_mock_client(lambda _: httpx.Response(200)), retry_delay=1.0, max_delay=4.0)
    assert 1.0 <= transport._compute_backoff(0) <= 1.25
    assert 2.0 <= transport._compute_backoff(1) <= 2.25
    assert 4.0 <= transport._compute_backoff(5) <= 4.25
