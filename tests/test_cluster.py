"""
Тесты для клиента IPFS Cluster
"""
import hashlib
import json

import httpx
import pytest

from ijazah.cluster import IpfsClusterClient
from ijazah.exceptions import ClusterError, UploadError


def file_part(request: httpx.Request) -> bytes:
    """Байты поля file из multipart тела"""
    boundary = request.headers["Content-Type"].split("boundary=")[1].encode()
    for part in request.content.split(b"--" + boundary):
        if b'name="file"' in part:
            return part.split(b"\r\n\r\n", 1)[1].rsplit(b"\r\n", 1)[0]
    raise AssertionError("file part not found")


class ClusterStub:
    """Заглушка кластера: основной, резервный API и шлюз"""

    def __init__(self, primary_down=False, ndjson=False):
        self.primary_down = primary_down
        self.ndjson = ndjson
        self.blobs = {}
        self.pinned = set()
        self.requests = []

    def paths(self, host):
        return [(r.method, r.url.path) for r in self.requests if r.url.host == host]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        path = request.url.path

        if host == "primary.test" and self.primary_down:
            raise httpx.ConnectError("connection refused", request=request)

        if host == "gateway.test":
            cid = path.rsplit("/", 1)[-1]
            if cid not in self.blobs:
                return httpx.Response(404)
            return httpx.Response(200, content=self.blobs[cid])

        if path == "/health":
            return httpx.Response(204)

        if path == "/token":
            return httpx.Response(200, json={"token": "jwt-123"})

        if path == "/add":
            data = file_part(request)
            cid = "bafy" + hashlib.sha256(data).hexdigest()[:32]
            self.blobs[cid] = data
            if self.ndjson:
                lines = [json.dumps({"name": "x", "cid": cid}), json.dumps({"name": "x", "cid": cid})]
                return httpx.Response(200, text="\n".join(lines))
            return httpx.Response(200, json=[{"name": "x", "cid": cid, "size": len(data)}])

        if path.startswith("/pins/"):
            cid = path.split("/")[2]
            if path.endswith("/recover"):
                return httpx.Response(202, json={"cid": cid})
            if cid == "broken":
                return httpx.Response(500, json={"message": "internal"})
            if request.method == "POST":
                self.pinned.add(cid)
                return httpx.Response(200, json={"cid": cid})
            if request.method == "DELETE":
                self.pinned.discard(cid)
                return httpx.Response(200, json={"cid": cid})
            if cid not in self.pinned:
                return httpx.Response(404, json={"message": "not found"})
            return httpx.Response(200, json={"cid": cid, "peer_map": {"peer1": {"status": "pinned"}}})

        if path == "/pins":
            return httpx.Response(200, json=[{"cid": cid} for cid in sorted(self.pinned)])

        if path == "/peers":
            return httpx.Response(200, json=[{"id": "peer1", "peername": "cluster0"}])

        if path == "/health/alerts":
            return httpx.Response(200, json=[])

        if path == "/id":
            return httpx.Response(200, json={"id": "peer1"})

        if path == "/version":
            return httpx.Response(200, json={"version": "1.0.8"})

        if path.startswith("/allocations"):
            return httpx.Response(200, json=[{"cid": path.rsplit("/", 1)[-1]}])

        return httpx.Response(404)


def make_client(stub, username="", password=""):
    return IpfsClusterClient(
        primary_url="http://primary.test:9094",
        fallback_url="http://fallback.test:9094",
        gateway_url="http://gateway.test/",
        username=username,
        password=password,
        transport=httpx.MockTransport(stub)
    )


class TestIpfsClusterClient:
    """Тесты для IpfsClusterClient"""

    @pytest.mark.asyncio
    async def test_add_and_cat_round_trip(self):
        """Тест: загруженные байты читаются из шлюза по CID"""
        client = make_client(ClusterStub())
        content = b"%PDF-1.4 certificate \r\n\r\n bytes"

        result = await client.add(content, filename="ijazah.pdf", local=False)

        assert result["url"] == f"http://gateway.test/ipfs/{result['cid']}"
        assert await client.cat(result["cid"]) == content
        await client.close()

    @pytest.mark.asyncio
    async def test_add_query_parameters(self):
        stub = ClusterStub()
        client = make_client(stub)

        await client.add(b"data", local=False, format="unixfs")

        add = next(r for r in stub.requests if r.url.path == "/add")
        assert add.url.params["local"] == "false"
        assert add.url.params["format"] == "unixfs"
        assert add.url.params["stream-channels"] == "false"

    @pytest.mark.asyncio
    async def test_add_ndjson_response(self):
        """Тест разбора потокового ответа"""
        client = make_client(ClusterStub(ndjson=True))

        result = await client.add(b"data", stream_channels=True)

        assert result["cid"].startswith("bafy")

    @pytest.mark.parametrize("payload, expected", [
        ([{"cid": "bafyA"}], "bafyA"),
        ({"cid": {"/": "bafyB"}}, "bafyB"),
        ({"Hash": "QmC"}, "QmC"),
        ([], None),
        ({"name": "x"}, None),
    ])
    def test_extract_cid(self, payload, expected):
        assert IpfsClusterClient._extract_cid(payload) == expected

    @pytest.mark.asyncio
    async def test_pin_idempotent(self):
        """Тест: повторное закрепление тоже успешно"""
        client = make_client(ClusterStub())

        assert await client.pin("bafyX") is True
        assert await client.pin("bafyX") is True

        status = await client.status("bafyX")
        assert status["peer_map"]["peer1"]["status"] == "pinned"

    @pytest.mark.asyncio
    async def test_pin_failure_returns_false(self):
        client = make_client(ClusterStub())

        assert await client.pin("broken") is False

    @pytest.mark.asyncio
    async def test_unpin_and_status(self):
        client = make_client(ClusterStub())
        await client.pin("bafyX")

        assert await client.unpin("bafyX") is True
        assert await client.status("bafyX") is None

    @pytest.mark.asyncio
    async def test_health_via_fallback(self):
        """Тест: основной API недоступен, резервный здоров"""
        client = make_client(ClusterStub(primary_down=True))

        assert await client.check_health() is True

    @pytest.mark.asyncio
    async def test_reads_use_fallback(self):
        """Тест чтения через резервный API"""
        stub = ClusterStub(primary_down=True)
        client = make_client(stub)

        peers = await client.get_peers()

        assert peers[0]["id"] == "peer1"
        assert ("GET", "/peers") in stub.paths("fallback.test")

    @pytest.mark.asyncio
    async def test_add_not_retried_on_fallback(self):
        """Тест: ошибка загрузки в основной API не повторяется на резервном"""
        stub = ClusterStub(primary_down=True)
        client = make_client(stub)

        with pytest.raises(UploadError):
            await client.add(b"data")

        assert ("POST", "/add") not in stub.paths("fallback.test")

    @pytest.mark.asyncio
    async def test_pin_not_retried_on_fallback(self):
        stub = ClusterStub(primary_down=True)
        client = make_client(stub)

        with pytest.raises(UploadError):
            await client.pin("bafyX")

        assert ("POST", "/pins/bafyX") not in stub.paths("fallback.test")

    @pytest.mark.asyncio
    async def test_authenticate_sets_bearer(self):
        """Тест получения JWT и передачи его в запросах"""
        stub = ClusterStub()
        client = make_client(stub, username="admin", password="secret")

        await client.list_pins()

        token_request = next(r for r in stub.requests if r.url.path == "/token")
        assert token_request.headers["Authorization"].startswith("Basic ")
        pins_request = next(r for r in stub.requests if r.url.path == "/pins")
        assert pins_request.headers["Authorization"] == "Bearer jwt-123"

    @pytest.mark.asyncio
    async def test_introspection(self):
        """Тест методов интроспекции кластера"""
        client = make_client(ClusterStub())

        assert (await client.info())["id"] == "peer1"
        assert (await client.version())["version"] == "1.0.8"
        assert await client.get_health_alerts() == []
        assert await client.get_allocations("bafyX") == [{"cid": "bafyX"}]
        assert await client.recover("bafyX") is True

    @pytest.mark.asyncio
    async def test_cat_missing(self):
        client = make_client(ClusterStub())

        with pytest.raises(ClusterError):
            await client.cat("bafyMissing")
