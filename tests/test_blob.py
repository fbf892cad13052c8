from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp import test_utils

from wifihub.core.errors import UploadFailed
from wifihub.services.storage.blob import HttpBlobStore, MockBlobStore, safe_filename


@pytest.fixture
async def object_store():
    stored = {}

    async def put(request: web.Request) -> web.Response:
        if request.match_info["path"].startswith("fail/"):
            return web.Response(status=503, text="unavailable")
        stored[request.match_info["path"]] = (await request.read(), request.headers.copy())
        return web.Response(status=200)

    app = web.Application()
    app.router.add_put("/bucket/{path:.*}", put)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield server, stored
    await server.close()


def test_safe_filename():
    assert safe_filename("mi recibo (1).jpg") == "mi_recibo__1_.jpg"
    assert safe_filename("") == "receipt"
    assert safe_filename(None) == "receipt"


async def test_mock_store_keeps_bytes():
    store = MockBlobStore()
    url = await store.upload("receipts/u/1_a.jpg", b"abc")
    assert url == "mock://blobs/receipts/u/1_a.jpg"
    assert store.objects["receipts/u/1_a.jpg"] == b"abc"


async def test_http_store_puts_with_bearer_auth(object_store):
    server, stored = object_store
    base = str(server.make_url("/bucket"))
    store = HttpBlobStore(base_url=base, public_url="https://cdn.example.com/bucket", auth_token="s3cret")

    url = await store.upload("receipts/u/1_a.jpg", b"jpeg")

    assert url == "https://cdn.example.com/bucket/receipts/u/1_a.jpg"
    body, headers = stored["receipts/u/1_a.jpg"]
    assert body == b"jpeg"
    assert headers["Authorization"] == "Bearer s3cret"
    assert headers["Content-Type"] == "image/jpeg"


async def test_http_store_error_status_raises(object_store):
    server, _ = object_store
    store = HttpBlobStore(base_url=str(server.make_url("/bucket")))

    with pytest.raises(UploadFailed) as exc:
        await store.upload("fail/x.jpg", b"jpeg")
    assert "503" in str(exc.value)


async def test_http_store_unreachable_raises():
    store = HttpBlobStore(base_url="http://127.0.0.1:9/bucket", timeout_seconds=2)
    with pytest.raises(UploadFailed):
        await store.upload("x.jpg", b"jpeg")
