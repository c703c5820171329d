from __future__ import annotations

import os
import typing as tp

import pytest

from swrproxy import BaseClock, Headers, Request, Response


class MockOrigin:
    """Request sender returning queued responses and remembering what it was sent."""

    def __init__(self, responses: tp.Optional[tp.List[Response]] = None) -> None:
        self.mocked_responses: tp.List[tp.Union[Response, Exception]] = list(responses or [])
        self.requests: tp.List[Request] = []

    def add_responses(self, responses: tp.List[tp.Union[Response, Exception]]) -> None:
        self.mocked_responses.extend(responses)

    async def __call__(self, request: Request) -> Response:
        self.requests.append(request)
        response = self.mocked_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FrozenClock(BaseClock):
    """Clock that only moves when a test sets `current`."""

    def __init__(self, now: int) -> None:
        self.current = now

    def now(self) -> int:
        return self.current


def create_request(
    url: str = "https://example.com/graphql",
    content: bytes = b'{"query": "{ items }"}',
    headers: tp.Optional[tp.Dict[str, str]] = None,
) -> Request:
    """Helper to create a request."""
    return Request(
        method="POST",
        url=url,
        headers=Headers(headers or {"Content-Type": "application/json"}),
        content=content,
    )


def create_response(
    status_code: int = 200,
    headers: tp.Optional[tp.Dict[str, str]] = None,
    content: bytes = b'{"data": {"items": []}}',
) -> Response:
    """Helper to create a response."""
    return Response(
        status_code=status_code,
        headers=Headers(headers or {}),
        content=content,
    )


@pytest.fixture()
def origin() -> MockOrigin:
    return MockOrigin()


@pytest.fixture()
def use_temp_dir(tmpdir):
    cur_dir = os.getcwd()
    os.chdir(tmpdir)
    yield
    os.chdir(cur_dir)
