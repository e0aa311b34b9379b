import json
import logging
import os
import shutil
import socketserver
import tempfile
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler
from urllib.parse import parse_qs, urlsplit

import pytest

from dinocluster.dockerapi import (
    API_VERSION,
    DockerClient,
    DockerError,
    iter_json_stream,
    pull_and_log,
)


@dataclass
class Recorded:
    method: str
    path: str
    query: dict
    headers: dict
    body: bytes


class _Handler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def _handle(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length else b""
        parsed = urlsplit(self.path)
        self.server.requests.append(
            Recorded(self.command, parsed.path, parse_qs(parsed.query), dict(self.headers), body)
        )
        status, payload = self.server.routes.get(
            (self.command, parsed.path), (404, b'{"message":"no such route"}')
        )
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    do_GET = do_POST = do_PUT = do_DELETE = _handle

    def log_message(self, format, *args):
        pass


@pytest.fixture
def server():
    directory = tempfile.mkdtemp()
    path = os.path.join(directory, "d.sock")
    srv = socketserver.ThreadingUnixStreamServer(path, _Handler)
    srv.daemon_threads = True
    srv.requests = []
    srv.routes = {}
    srv.path = path
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield srv
    srv.shutdown()
    srv.server_close()
    shutil.rmtree(directory, ignore_errors=True)


def api(path):
    return f"/{API_VERSION}{path}"


def test_iter_json_stream_handles_split_chunks():
    chunks = [b'{"status":"a"}{"sta', b'tus":"b"}\n', b'  {"status":"c"}']
    assert list(iter_json_stream(chunks)) == [
        {"status": "a"},
        {"status": "b"},
        {"status": "c"},
    ]


def test_iter_json_stream_handles_split_multibyte_characters():
    encoded = json.dumps({"status": "caf\u00e9"}, ensure_ascii=False).encode("utf-8")
    cut = encoded.index(b"\xc3") + 1
    assert list(iter_json_stream([encoded[:cut], encoded[cut:]])) == [{"status": "caf\u00e9"}]


def test_iter_json_stream_empty():
    assert list(iter_json_stream([])) == []
    assert list(iter_json_stream([b"  \n"])) == []


def test_iter_json_stream_rejects_invalid_data():
    stream = iter_json_stream([b'{"a":1}{bad'])
    assert next(stream) == {"a": 1}
    with pytest.raises(DockerError):
        next(stream)


def test_iter_json_stream_rejects_truncated_value():
    with pytest.raises(DockerError):
        list(iter_json_stream([b'{"a":']))


class FakePullClient:
    def __init__(self, messages=None, error=None):
        self.messages = messages or []
        self.error = error
        self.calls = []

    def pull_image(self, ref, registry_auth=""):
        self.calls.append((ref, registry_auth))
        if self.error:
            raise self.error
        return iter(self.messages)


def test_pull_and_log_skips_progress_statuses(caplog):
    client = FakePullClient(
        [
            {"status": "Pulling fs layer"},
            {"status": "Downloading"},
            {"status": "Waiting"},
            {"status": "Extracting"},
            {"status": "Pull complete"},
        ]
    )
    logger = logging.getLogger("test.pull")
    with caplog.at_level(logging.DEBUG, logger="test.pull"):
        pull_and_log(client, "couchbase:enterprise-7.2.0", logger, registry_auth="token")
    messages = [record.getMessage() for record in caplog.records]
    assert client.calls == [("couchbase:enterprise-7.2.0", "token")]
    assert any("Pulling fs layer" in m for m in messages)
    assert any("Pull complete" in m for m in messages)
    assert not any("Downloading" in m or "Waiting" in m or "Extracting" in m for m in messages)


def test_pull_and_log_wraps_errors():
    client = FakePullClient(error=DockerError("denied"))
    with pytest.raises(DockerError, match="failed to pull image: denied"):
        pull_and_log(client, "couchbase:enterprise-7.2.0")


def test_list_containers(server):
    containers = [{"Id": "abc", "Labels": {"x": "y"}}]
    server.routes[("GET", api("/containers/json"))] = (200, json.dumps(containers).encode())
    client = DockerClient(server.path)
    assert client.list_containers(all=True) == containers
    assert server.requests[0].query == {"all": ["1"]}


def test_create_container_sends_config(server):
    server.routes[("POST", api("/containers/create"))] = (201, b'{"Id":"abc123"}')
    client = DockerClient(server.path)
    container_id = client.create_container(
        "node-1",
        "couchbase:enterprise-7.2.0",
        labels={"k": "v"},
        volumes=["/etc/localtime:/etc/localtime"],
        network_mode="mynet",
        auto_remove=True,
        cap_add=["NET_ADMIN"],
    )
    assert container_id == "abc123"
    request = server.requests[0]
    assert request.query == {"name": ["node-1"]}
    body = json.loads(request.body)
    assert body["Image"] == "couchbase:enterprise-7.2.0"
    assert body["Labels"] == {"k": "v"}
    assert body["Volumes"] == {"/etc/localtime:/etc/localtime": {}}
    assert body["HostConfig"] == {
        "AutoRemove": True,
        "NetworkMode": "mynet",
        "CapAdd": ["NET_ADMIN"],
    }


def test_error_status_raises_with_message(server):
    server.routes[("POST", api("/containers/missing/start"))] = (
        404,
        b'{"message":"No such container: missing"}',
    )
    client = DockerClient(server.path)
    with pytest.raises(DockerError, match="No such container: missing"):
        client.start_container("missing")


def test_stop_and_remove_use_expected_routes(server):
    server.routes[("POST", api("/containers/abc/stop"))] = (204, b"")
    server.routes[("DELETE", api("/containers/abc"))] = (204, b"")
    client = DockerClient(server.path)
    client.stop_container("abc")
    client.remove_container("abc")
    assert [(r.method, r.path) for r in server.requests] == [
        ("POST", api("/containers/abc/stop")),
        ("DELETE", api("/containers/abc")),
    ]


def test_archive_put_and_get(server):
    archive = b"tar-bytes\x00\x01"
    server.routes[("PUT", api("/containers/abc/archive"))] = (200, b"")
    server.routes[("GET", api("/containers/abc/archive"))] = (200, archive)
    client = DockerClient(server.path)
    client.put_archive("abc", "/var/", archive)
    assert client.get_archive("abc", "/var/cbdyncluster") == archive
    put, get = server.requests
    assert put.body == archive
    assert put.query == {"path": ["/var/"]}
    assert put.headers["Content-Type"] == "application/x-tar"
    assert get.query == {"path": ["/var/cbdyncluster"]}


def test_list_images(server):
    images = [{"RepoTags": ["couchbase:enterprise-7.2.0"]}]
    server.routes[("GET", api("/images/json"))] = (200, json.dumps(images).encode())
    assert DockerClient(server.path).list_images() == images


def test_pull_image_streams_messages(server):
    messages = [{"status": "Pulling"}, {"status": "Pull complete"}]
    payload = b"".join(json.dumps(m).encode() + b"\r\n" for m in messages)
    server.routes[("POST", api("/images/create"))] = (200, payload)
    client = DockerClient(server.path)
    assert list(client.pull_image("ghcr.io/cb-vanilla/server:7.2.0-14", "token")) == messages
    request = server.requests[0]
    assert request.query == {"fromImage": ["ghcr.io/cb-vanilla/server"], "tag": ["7.2.0-14"]}
    assert request.headers["X-Registry-Auth"] == "token"


def test_pull_image_without_tag_uses_latest(server):
    server.routes[("POST", api("/images/create"))] = (200, b"")
    list(DockerClient(server.path).pull_image("couchbase"))
    assert server.requests[0].query == {"fromImage": ["couchbase"], "tag": ["latest"]}


def test_missing_socket_raises():
    directory = tempfile.mkdtemp()
    try:
        client = DockerClient(os.path.join(directory, "absent.sock"))
        with pytest.raises(DockerError, match="failed to contact docker daemon"):
            client.list_containers()
    finally:
        shutil.rmtree(directory, ignore_errors=True)