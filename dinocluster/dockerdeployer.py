"""Clusters made of node containers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from .clustersetup import MGMT_PORT
from .deployment import ConnectInfo, Deployer, DockerClusterInfo, DockerClusterNodeInfo
from .dockerapi import DockerClient, DockerError
from .dockercontroller import DockerController, NodeInfo
from .imageproviders import HybridImageProvider

KV_PORT = 11210

_log = logging.getLogger(__name__)


def group_nodes_into_clusters(nodes: Iterable[NodeInfo]) -> list[DockerClusterInfo]:
    """Group nodes by cluster id, nodes sorted by name, clusters in order of appearance."""
    clusters: dict[str, DockerClusterInfo] = {}
    for node in sorted(nodes, key=lambda n: n.name):
        cluster = clusters.get(node.cluster_id)
        if cluster is None:
            cluster = clusters[node.cluster_id] = DockerClusterInfo(id=node.cluster_id)
        cluster.creator = node.creator
        cluster.owner = node.owner
        cluster.purpose = node.purpose
        if node.expiry is not None and (cluster.expiry is None or node.expiry > cluster.expiry):
            cluster.expiry = node.expiry
        cluster.nodes.append(
            DockerClusterNodeInfo(
                id=node.node_id,
                name=node.name,
                resource_id="docker:" + node.container_id[:8] + "...",
                ip_address=node.ip_address,
            )
        )
    return list(clusters.values())


def build_connect_info(cluster: DockerClusterInfo) -> ConnectInfo:
    """Connection string over every node and a management address of the last one."""
    addresses = []
    mgmt_address = ""
    for node in cluster.nodes:
        kv_port = KV_PORT
        if kv_port == KV_PORT:
            addresses.append(node.ip_address)
        else:
            addresses.append(f"{node.ip_address}:{kv_port}")
        mgmt_address = f"{node.ip_address}:{MGMT_PORT}"
    return ConnectInfo(
        conn_str=f"couchbase://{','.join(addresses)}\n",
        mgmt=f"http://{mgmt_address}\n",
    )


def _is_expired(node: NodeInfo, now: datetime) -> bool:
    return node.expiry is None or not node.expiry > now


class DockerDeployer(Deployer):
    """Deploys clusters as groups of containers on the local engine."""

    def __init__(
        self,
        docker: DockerClient,
        network_name: str = "",
        ghcr_username: str = "",
        ghcr_password: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.logger = logger or _log
        self.docker = docker
        self.image_provider = HybridImageProvider(
            docker, ghcr_username, ghcr_password, self.logger
        )
        self.controller = DockerController(docker, network_name, self.logger)

    def _clusters(self) -> list[DockerClusterInfo]:
        try:
            nodes = self.controller.list_nodes()
        except DockerError as exc:
            raise DockerError(f"failed to list nodes: {exc}") from exc
        return group_nodes_into_clusters(nodes)

    def list_clusters(self) -> list[DockerClusterInfo]:
        return self._clusters()

    def _remove_quietly(self, node: NodeInfo) -> None:
        self.logger.info("removing node %s (container %s)", node.node_id, node.container_id)
        try:
            self.controller.remove_node(node.container_id)
        except DockerError as exc:
            self.logger.warning("failed to remove node %s: %s", node.node_id, exc)

    def remove_cluster(self, cluster_id: str) -> None:
        for node in self.controller.list_nodes():
            if node.cluster_id == cluster_id:
                self._remove_quietly(node)

    def remove_all(self) -> None:
        for node in self.controller.list_nodes():
            self._remove_quietly(node)

    def get_connect_info(self, cluster_id: str) -> ConnectInfo:
        cluster = next((c for c in self._clusters() if c.id == cluster_id), None)
        if cluster is None:
            raise LookupError("failed to find cluster")
        return build_connect_info(cluster)

    def cleanup(self) -> None:
        """Remove every node whose expiry has passed or is unknown."""
        now = datetime.now(timezone.utc)
        for node in self.controller.list_nodes():
            if _is_expired(node, now):
                self._remove_quietly(node)

    def destroy_all_resources(self) -> None:
        """Remove every node, stopping at the first failure."""
        try:
            nodes = self.controller.list_nodes()
        except DockerError as exc:
            raise DockerError(f"failed to list all nodes: {exc}") from exc
        for node in nodes:
            self.logger.info("removing node %s (container %s)", node.node_id, node.container_id)
            try:
                self.controller.remove_node(node.container_id)
            except DockerError as exc:
                raise DockerError(f"failed to remove: {exc}") from exc