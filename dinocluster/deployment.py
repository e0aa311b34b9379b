"""Common cluster descriptions and the interface every deployer offers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Sequence, runtime_checkable


@runtime_checkable
class ClusterNodeInfo(Protocol):
    """A node that belongs to a deployed cluster."""

    @property
    def id(self) -> str:
        """Node identifier."""

    @property
    def resource_id(self) -> str:
        """Identifier of the backing resource."""

    @property
    def name(self) -> str:
        """Human-readable node name."""

    @property
    def ip_address(self) -> str:
        """Address the node can be reached at."""


@runtime_checkable
class ClusterInfo(Protocol):
    """A deployed cluster."""

    @property
    def id(self) -> str:
        """Cluster identifier."""

    @property
    def purpose(self) -> str:
        """Free-text purpose of the cluster."""

    @property
    def expiry(self) -> datetime | None:
        """When the cluster expires, or None if unknown."""

    @property
    def state(self) -> str:
        """Current state of the cluster."""

    @property
    def nodes(self) -> Sequence[ClusterNodeInfo]:
        """Nodes that make up the cluster."""


@dataclass(frozen=True)
class ConnectInfo:
    """How to reach a cluster."""

    conn_str: str
    mgmt: str


class Deployer(ABC):
    """Creates, lists and removes clusters on some backend."""

    @abstractmethod
    def list_clusters(self) -> list[ClusterInfo]:
        """Return every cluster this deployer manages."""

    @abstractmethod
    def remove_cluster(self, cluster_id: str) -> None:
        """Remove one cluster."""

    @abstractmethod
    def remove_all(self) -> None:
        """Remove every managed cluster."""

    @abstractmethod
    def cleanup(self) -> None:
        """Remove clusters whose expiry has passed."""

    @abstractmethod
    def get_connect_info(self, cluster_id: str) -> ConnectInfo:
        """Return connection details for a cluster."""


@dataclass
class DockerClusterNodeInfo:
    """A node running in a container."""

    id: str
    name: str
    resource_id: str
    ip_address: str


@dataclass
class DockerClusterInfo:
    """A cluster made of containers."""

    id: str
    creator: str = ""
    owner: str = ""
    purpose: str = ""
    expiry: datetime | None = None
    nodes: list[DockerClusterNodeInfo] = field(default_factory=list)

    @property
    def state(self) -> str:
        return "ready"


@dataclass(frozen=True)
class LocalClusterNodeInfo:
    """The single node of a server running on this machine."""

    @property
    def id(self) -> str:
        return "a"

    @property
    def name(self) -> str:
        return ""

    @property
    def resource_id(self) -> str:
        return ""

    @property
    def ip_address(self) -> str:
        return "127.0.0.1"


@dataclass(frozen=True)
class LocalClusterInfo:
    """The one-node cluster running on this machine."""

    @property
    def id(self) -> str:
        return "a"

    @property
    def purpose(self) -> str:
        return ""

    @property
    def expiry(self) -> datetime | None:
        return None

    @property
    def state(self) -> str:
        return "ready"

    @property
    def nodes(self) -> list[LocalClusterNodeInfo]:
        return [LocalClusterNodeInfo()]


@dataclass
class CloudClusterInfo:
    """A cluster hosted by the cloud service."""

    id: str
    cloud_project_id: str
    cloud_cluster_id: str
    region: str
    expiry: datetime | None
    state: str

    @property
    def purpose(self) -> str:
        return ""

    @property
    def nodes(self) -> list[ClusterNodeInfo]:
        return []