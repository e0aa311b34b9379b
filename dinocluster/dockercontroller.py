"""Server nodes that run as containers: listing, state, deployment and removal."""

from __future__ import annotations

import io
import json
import logging
import re
import tarfile
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from .clustersetup import MGMT_PORT, NodeManager
from .dockerapi import DockerClient, DockerError
from .imagedef import ImageRef

_LABEL_PREFIX = "com.couchbase.dyncluster."
LABEL_CREATOR = _LABEL_PREFIX + "creator"
LABEL_CLUSTER_ID = _LABEL_PREFIX + "cluster_id"
LABEL_PURPOSE = _LABEL_PREFIX + "purpose"
LABEL_NODE_ID = _LABEL_PREFIX + "node_id"
LABEL_NODE_NAME = _LABEL_PREFIX + "node_name"

CONTAINER_NAME_PREFIX = "cbdynnode-"
STATE_DIR = "/var/"
STATE_ARCHIVE_PATH = "/var/cbdyncluster"
STATE_MEMBER = "cbdyncluster/state"
_ZERO_TIME = "0001-01-01T00:00:00Z"
_RFC3339 = re.compile(
    r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)

_log = logging.getLogger(__name__)


@dataclass
class NodeInfo:
    """A node container as seen through its labels and stored state."""

    container_id: str
    node_id: str
    cluster_id: str
    name: str
    creator: str = ""
    owner: str = ""
    purpose: str = ""
    expiry: datetime | None = None
    ip_address: str = ""


@dataclass(frozen=True)
class NodeState:
    """Ownership and expiry data stored inside a node container."""

    owner: str = ""
    expiry: datetime | None = None


@dataclass(frozen=True)
class DeployNodeOptions:
    """What to deploy as a new node."""

    name: str
    cluster_id: str
    image: ImageRef
    expiry: timedelta = timedelta(0)
    creator: str = ""
    purpose: str = ""


def _format_time(value: datetime | None) -> str:
    if value is None:
        return _ZERO_TIME
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    return text + "Z"


def _parse_time(text: str) -> datetime | None:
    match = _RFC3339.fullmatch(text)
    if match is None:
        raise ValueError(f"invalid timestamp {text!r}")
    base, fraction, zone = match.groups()
    if text == _ZERO_TIME:
        return None
    micros = (fraction or "")[:6].ljust(6, "0")
    offset = "+00:00" if zone == "Z" else zone
    return datetime.fromisoformat(f"{base}.{micros}{offset}")


def parse_container_info(container: Mapping[str, Any]) -> NodeInfo | None:
    """Describe a container summary as a node, or None if it is not one of ours."""
    labels = container.get("Labels") or {}
    cluster_id = labels.get(LABEL_CLUSTER_ID, "")
    if not cluster_id:
        return None

    networks = (container.get("NetworkSettings") or {}).get("Networks") or {}
    ip_address = ""
    for settings in networks.values():
        ip_address = (settings or {}).get("IPAddress", "")

    return NodeInfo(
        container_id=container.get("Id", ""),
        node_id=labels.get(LABEL_NODE_ID, ""),
        cluster_id=cluster_id,
        name=labels.get(LABEL_NODE_NAME, ""),
        creator=labels.get(LABEL_CREATOR, ""),
        purpose=labels.get(LABEL_PURPOSE, ""),
        ip_address=ip_address,
    )


def encode_node_state(state: NodeState) -> bytes:
    """Return a tar archive holding the node state file."""
    payload = json.dumps(
        {"Owner": state.owner, "Expiry": _format_time(state.expiry)},
        separators=(",", ":"),
    ).encode("utf-8")
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        info = tarfile.TarInfo(STATE_MEMBER)
        info.size = len(payload)
        info.mode = 0o644
        info.mtime = int(time.time())
        tar.addfile(info, io.BytesIO(payload))
    return buffer.getvalue()


def decode_node_state(archive: bytes) -> NodeState | None:
    """Read the node state out of a tar archive; None if the archive holds none."""
    if not archive:
        return None

    raw: Any = None
    try:
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r:") as tar:
            for member in tar:
                if member.name != STATE_MEMBER:
                    continue
                handle = tar.extractfile(member)
                data = handle.read() if handle is not None else b""
                try:
                    raw = json.loads(data)
                except ValueError as exc:
                    raise DockerError(
                        f"failed to parse dyncluster node state data: {exc}"
                    ) from exc
    except tarfile.TarError as exc:
        raise DockerError(f"failed to read dyncluster node state file: {exc}") from exc

    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise DockerError("failed to parse dyncluster node state data: not an object")

    fields = {str(key).lower(): value for key, value in raw.items()}
    owner = fields.get("owner") or ""
    expiry_text = fields.get("expiry")
    try:
        expiry = _parse_time(expiry_text) if expiry_text else None
    except (TypeError, ValueError) as exc:
        raise DockerError(f"failed to parse dyncluster node state data: {exc}") from exc
    return NodeState(owner=str(owner), expiry=expiry)


class DockerController:
    """Creates, inspects and removes node containers."""

    poll_interval = 0.1
    online_timeout: float | None = None

    def __init__(
        self,
        docker: DockerClient,
        network_name: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        self.docker = docker
        self.network_name = network_name
        self.logger = logger or _log

    def list_nodes(self) -> list[NodeInfo]:
        """Return every node container, with its stored state where readable."""
        self.logger.debug("listing nodes")
        try:
            containers = self.docker.list_containers(all=True)
        except DockerError as exc:
            raise DockerError(f"failed to list containers: {exc}") from exc

        nodes = []
        for container in containers:
            node = parse_container_info(container)
            if node is None:
                continue
            try:
                state = self.read_node_state(node.container_id)
            except DockerError:
                state = None
            if state is not None:
                node.owner = state.owner
                node.expiry = state.expiry
            nodes.append(node)
        return nodes

    def write_node_state(self, container_id: str, state: NodeState) -> None:
        self.logger.debug("writing node state to %s: %s", container_id, state)
        try:
            self.docker.put_archive(container_id, STATE_DIR, encode_node_state(state))
        except DockerError as exc:
            raise DockerError(f"failed to write dyncluster node state: {exc}") from exc

    def read_node_state(self, container_id: str) -> NodeState | None:
        self.logger.debug("reading node state from %s", container_id)
        try:
            archive = self.docker.get_archive(container_id, STATE_ARCHIVE_PATH)
        except DockerError as exc:
            raise DockerError(f"failed to read dyncluster node state: {exc}") from exc
        return decode_node_state(archive)

    def deploy_node(self, options: DeployNodeOptions) -> NodeInfo:
        """Start a node container, record its state and wait until it answers."""
        node_id = str(uuid.uuid4())
        logger = self.logger
        logger.debug("deploying node %s: %s", node_id, options)

        try:
            container_id = self.docker.create_container(
                name=CONTAINER_NAME_PREFIX + node_id,
                image=options.image.image_path,
                labels={
                    LABEL_CREATOR: options.creator,
                    LABEL_CLUSTER_ID: options.cluster_id,
                    LABEL_PURPOSE: options.purpose,
                    LABEL_NODE_ID: node_id,
                    LABEL_NODE_NAME: options.name,
                },
                volumes=["/etc/localtime:/etc/localtime"],
                network_mode=self.network_name,
                auto_remove=True,
                cap_add=["NET_ADMIN"],
            )
        except DockerError as exc:
            raise DockerError(f"failed to create container: {exc}") from exc

        logger.debug("container %s created, starting", container_id)
        try:
            self.docker.start_container(container_id)
        except DockerError as exc:
            raise DockerError(f"failed to start container: {exc}") from exc

        expiry = datetime.now(timezone.utc) + options.expiry
        try:
            self.write_node_state(container_id, NodeState(owner=options.creator, expiry=expiry))
        except DockerError as exc:
            raise DockerError(f"failed write node state: {exc}") from exc

        try:
            nodes = self.list_nodes()
        except DockerError as exc:
            raise DockerError(f"failed to list nodes: {exc}") from exc

        node = next((n for n in reversed(nodes) if n.container_id == container_id), None)
        if node is None:
            raise DockerError("failed to find newly created container")

        logger.debug("container started at %s, waiting for it to get ready", node.ip_address)
        manager = NodeManager(
            f"http://{node.ip_address}:{MGMT_PORT}", poll_interval=self.poll_interval
        )
        try:
            manager.wait_for_online(timeout=self.online_timeout)
        except TimeoutError as exc:
            raise DockerError(f"failed to wait for node readiness: {exc}") from exc

        logger.debug("container is ready")
        return node

    def remove_node(self, container_id: str) -> None:
        """Stop a node container and wait until it has disappeared."""
        self.logger.debug("removing node %s", container_id)
        try:
            self.docker.stop_container(container_id)
        except DockerError as exc:
            raise DockerError(f"failed to stop container: {exc}") from exc

        try:
            self.docker.remove_container(container_id)
        except DockerError:
            pass  # auto-remove usually beats us to it

        while True:
            try:
                nodes = self.list_nodes()
            except DockerError as exc:
                raise DockerError(f"failed to list nodes: {exc}") from exc
            if not any(node.container_id == container_id for node in nodes):
                break
            time.sleep(self.poll_interval)

        self.logger.debug("node %s has been removed", container_id)