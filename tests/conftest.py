"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio

from courier.config import RetryPolicy, Settings
from courier.models import Endpoint
from courier.storage import CourierStorage
from courier.webhooks import WebhookDispatcher

ENDPOINT_URL = "https://receiver.example.com/hooks"


class Receiver:
    """Fake webhook receiver backed by httpx.MockTransport.

    Responses are served in order; the last one repeats. Entries may be
    a status code or an exception instance to raise. With ``delay`` each
    response is held back that many seconds.
    """

    def __init__(
        self,
        *responses: int | Exception,
        body: str | None = None,
        delay: float = 0.0,
    ) -> None:
        self.responses: list[int | Exception] = list(responses) or [200]
        self.body = body
        self.delay = delay
        self.requests: list[httpx.Request] = []

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.responses) - 1)
        outcome = self.responses[index]
        if isinstance(outcome, Exception):
            raise outcome
        text = self.body if self.body is not None else f"status {outcome}"
        return httpx.Response(outcome, text=text)

    async def _handle_slowly(self, request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(self.delay)
        return self._handle(request)

    @property
    def transport(self) -> httpx.MockTransport:
        if self.delay:
            return httpx.MockTransport(self._handle_slowly)
        return httpx.MockTransport(self._handle)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    def bodies(self) -> list[bytes]:
        return [request.content for request in self.requests]

    def envelopes(self) -> list[dict[str, Any]]:
        return [json.loads(body) for body in self.bodies()]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a file-backed SQLite database for this test."""
    return Settings(
        _env_file=None,
        env="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'courier.db'}",
        delivery_timeout_seconds=2.0,
        claim_lease_seconds=30.0,
        retry=RetryPolicy(base_delay_seconds=60, max_delay_seconds=3600, jitter_ratio=0.1),
    )


@pytest_asyncio.fixture
async def storage(settings: Settings) -> AsyncIterator[CourierStorage]:
    """Initialized storage, closed after the test."""
    async with CourierStorage(database_url=settings.database_url) as store:
        yield store


@pytest.fixture
def make_endpoint() -> Callable[..., Endpoint]:
    """Factory for endpoints with sensible defaults."""

    def _make(**overrides: Any) -> Endpoint:
        values: dict[str, Any] = {
            "organization_id": "org_1",
            "url": ENDPOINT_URL,
            "events": ["menu.published"],
            "secret": "whsec_test_secret_value_0123456789",
        }
        values.update(overrides)
        return Endpoint.model_validate(values)

    return _make


@pytest.fixture
def receiver() -> Receiver:
    return Receiver()


@pytest_asyncio.fixture
async def make_dispatcher(
    storage: CourierStorage,
    settings: Settings,
) -> AsyncIterator[Callable[..., WebhookDispatcher]]:
    """Factory for dispatchers that talk to a Receiver."""
    created: list[WebhookDispatcher] = []

    def _make(receiver: Receiver, **kwargs: Any) -> WebhookDispatcher:
        dispatcher = WebhookDispatcher(
            storage,
            settings=kwargs.pop("settings", settings),
            client=receiver.client(),
            **kwargs,
        )
        created.append(dispatcher)
        return dispatcher

    yield _make

    for dispatcher in created:
        await dispatcher.client.aclose()
