"""A small client for the container engine's HTTP API over its unix socket."""

from __future__ import annotations

import codecs
import http.client
import json
import logging
import socket
from typing import Any, Iterable, Iterator, Mapping
from urllib.parse import quote, urlencode

DEFAULT_SOCKET_PATH = "/var/run/docker.sock"
API_VERSION = "v1.41"
_CHUNK_SIZE = 8192
_QUIET_PULL_STATUSES = frozenset({"Waiting", "Downloading", "Extracting"})

_log = logging.getLogger(__name__)


class DockerError(RuntimeError):
    """Raised when the container engine reports or causes a failure."""


class _UnixHTTPConnection(http.client.HTTPConnection):
    def __init__(self, socket_path: str) -> None:
        super().__init__("localhost")
        self._socket_path = socket_path

    def connect(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(self._socket_path)
        except OSError:
            sock.close()
            raise
        self.sock = sock


def _error_message(status: int, payload: bytes) -> str:
    text = payload.decode("utf-8", errors="replace").strip()
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        text = str(data["message"])
    return f"docker request failed with status {status}: {text}"


def _split_reference(ref: str) -> tuple[str, str]:
    name, sep, digest = ref.partition("@")
    if sep:
        return name, digest
    slash = ref.rfind("/")
    colon = ref.rfind(":")
    if colon > slash:
        return ref[:colon], ref[colon + 1:]
    return ref, "latest"


def _container_path(container_id: str, suffix: str = "") -> str:
    return f"/containers/{quote(container_id, safe='')}{suffix}"


def iter_json_stream(chunks: Iterable[bytes]) -> Iterator[Any]:
    """Decode a stream of concatenated JSON values arriving in arbitrary chunks."""
    decoder = json.JSONDecoder()
    text_decoder = codecs.getincrementaldecoder("utf-8")()
    buffer = ""

    def drain(final: bool) -> Iterator[Any]:
        nonlocal buffer
        while True:
            buffer = buffer.lstrip()
            if not buffer:
                return
            try:
                value, end = decoder.raw_decode(buffer)
            except json.JSONDecodeError as exc:
                if final:
                    raise DockerError(f"json decode failure: {exc}") from exc
                return
            buffer = buffer[end:]
            yield value

    try:
        for chunk in chunks:
            buffer += text_decoder.decode(chunk)
            yield from drain(final=False)
        buffer += text_decoder.decode(b"", final=True)
    except UnicodeDecodeError as exc:
        raise DockerError(f"json decode failure: {exc}") from exc
    yield from drain(final=True)


class DockerClient:
    """Talks to the container engine through its unix socket."""

    def __init__(self, socket_path: str = DEFAULT_SOCKET_PATH) -> None:
        self.socket_path = str(socket_path)

    @staticmethod
    def _url(path: str, query: Mapping[str, str] | None = None) -> str:
        url = f"/{API_VERSION}{path}"
        if query:
            url += "?" + urlencode(query)
        return url

    def _open(
        self,
        method: str,
        path: str,
        query: Mapping[str, str] | None = None,
        body: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> tuple[_UnixHTTPConnection, http.client.HTTPResponse]:
        conn = _UnixHTTPConnection(self.socket_path)
        try:
            conn.request(method, self._url(path, query), body=body, headers=dict(headers or {}))
            resp = conn.getresponse()
        except (OSError, http.client.HTTPException) as exc:
            conn.close()
            raise DockerError(f"failed to contact docker daemon: {exc}") from exc

        if resp.status >= 400:
            try:
                payload = resp.read()
            except (OSError, http.client.HTTPException):
                payload = b""
            finally:
                conn.close()
            raise DockerError(_error_message(resp.status, payload))
        return conn, resp

    def _call(
        self,
        method: str,
        path: str,
        query: Mapping[str, str] | None = None,
        body: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> bytes:
        conn, resp = self._open(method, path, query, body, headers)
        try:
            return resp.read()
        except (OSError, http.client.HTTPException) as exc:
            raise DockerError(f"failed to read docker response: {exc}") from exc
        finally:
            conn.close()

    def _call_json(self, method: str, path: str, query=None, payload: Any = None) -> Any:
        body = None
        headers = {}
        if payload is not None:
            body = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        data = self._call(method, path, query, body, headers)
        if not data:
            return None
        try:
            return json.loads(data)
        except ValueError as exc:
            raise DockerError(f"failed to decode docker response: {exc}") from exc

    def list_containers(self, all: bool = False) -> list[dict]:
        """Return the engine's container summaries."""
        query = {"all": "1"} if all else None
        return self._call_json("GET", "/containers/json", query) or []

    def create_container(
        self,
        name: str,
        image: str,
        labels: Mapping[str, str] | None = None,
        volumes: Iterable[str] = (),
        network_mode: str = "",
        auto_remove: bool = False,
        cap_add: Iterable[str] = (),
    ) -> str:
        """Create a container and return its id."""
        host_config: dict[str, Any] = {"AutoRemove": auto_remove}
        if network_mode:
            host_config["NetworkMode"] = network_mode
        caps = list(cap_add)
        if caps:
            host_config["CapAdd"] = caps
        config = {
            "Image": image,
            "Labels": dict(labels or {}),
            "Volumes": {volume: {} for volume in volumes},
            "HostConfig": host_config,
        }
        result = self._call_json("POST", "/containers/create", {"name": name}, config) or {}
        container_id = result.get("Id")
        if not container_id:
            raise DockerError("container creation returned no id")
        return container_id

    def start_container(self, container_id: str) -> None:
        self._call("POST", _container_path(container_id, "/start"))

    def stop_container(self, container_id: str) -> None:
        self._call("POST", _container_path(container_id, "/stop"))

    def remove_container(self, container_id: str) -> None:
        self._call("DELETE", _container_path(container_id))

    def put_archive(self, container_id: str, path: str, data: bytes) -> None:
        """Extract a tar archive into ``path`` inside the container."""
        self._call(
            "PUT",
            _container_path(container_id, "/archive"),
            {"path": path},
            bytes(data),
            {"Content-Type": "application/x-tar"},
        )

    def get_archive(self, container_id: str, path: str) -> bytes:
        """Return a tar archive of ``path`` inside the container."""
        return self._call("GET", _container_path(container_id, "/archive"), {"path": path})

    def list_images(self) -> list[dict]:
        return self._call_json("GET", "/images/json") or []

    def pull_image(self, ref: str, registry_auth: str = "") -> Iterator[Any]:
        """Start pulling ``ref`` and return an iterator over the progress messages."""
        name, tag = _split_reference(ref)
        headers = {"X-Registry-Auth": registry_auth} if registry_auth else {}
        conn, resp = self._open(
            "POST", "/images/create", {"fromImage": name, "tag": tag}, headers=headers
        )
        return self._stream(conn, resp)

    @staticmethod
    def _stream(
        conn: _UnixHTTPConnection, resp: http.client.HTTPResponse
    ) -> Iterator[Any]:
        try:
            yield from iter_json_stream(iter(lambda: resp.read(_CHUNK_SIZE), b""))
        except (OSError, http.client.HTTPException) as exc:
            raise DockerError(f"failed to read docker stream: {exc}") from exc
        finally:
            conn.close()


def pull_and_log(
    client: DockerClient,
    ref: str,
    logger: logging.Logger | None = None,
    registry_auth: str = "",
) -> None:
    """Pull an image to completion, logging progress other than layer chatter."""
    logger = logger or _log
    try:
        messages = client.pull_image(ref, registry_auth=registry_auth)
    except DockerError as exc:
        raise DockerError(f"failed to pull image: {exc}") from exc

    try:
        for message in messages:
            status = message.get("status", "") if isinstance(message, dict) else ""
            if status not in _QUIET_PULL_STATUSES:
                logger.debug("docker pull output: %s", status)
    except DockerError as exc:
        raise DockerError(f"failure while reading pull progress: {exc}") from exc