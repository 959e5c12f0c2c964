import asyncio
from types import SimpleNamespace

import pytest
from aiohttp.test_utils import TestClient, TestServer

from transports.webhook import SECRET_HEADER, WEBHOOK_PATH, WebhookServer


@pytest.fixture
def application():
    return SimpleNamespace(bot=None, update_queue=asyncio.Queue())


@pytest.fixture
async def client(application):
    server = WebhookServer(application, secret="s3cret")
    async with TestClient(TestServer(server.app)) as client:
        yield client


async def test_update_is_queued(client, application):
    response = await client.post(
        WEBHOOK_PATH, json={"update_id": 7}, headers={SECRET_HEADER: "s3cret"}
    )

    assert response.status == 200
    assert await response.text() == "ok"
    update = application.update_queue.get_nowait()
    assert update.update_id == 7


async def test_bad_secret_is_rejected(client, application):
    response = await client.post(WEBHOOK_PATH, json={"update_id": 7}, headers={SECRET_HEADER: "nope"})

    assert response.status == 403
    assert application.update_queue.empty()


async def test_invalid_json(client, application):
    response = await client.post(
        WEBHOOK_PATH, data="{not json", headers={SECRET_HEADER: "s3cret"}
    )

    assert response.status == 400
    assert application.update_queue.empty()


async def test_health(client):
    response = await client.get("/health")

    assert response.status == 200
    assert await response.json() == {"status": "ok"}
