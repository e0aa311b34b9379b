"""Bringing nodes online and forming them into a cluster."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from .nodecontroller import ClusterControlError, Controller

MGMT_PORT = 8091


@dataclass
class SetupOneNodeClusterOptions:
    """Settings applied when initialising the first node."""

    username: str
    password: str
    kv_memory_quota_mb: int = 0
    index_memory_quota_mb: int = 0
    fts_memory_quota_mb: int = 0
    cbas_memory_quota_mb: int = 0
    eventing_memory_quota_mb: int = 0
    services: list[str] = field(default_factory=list)


@dataclass
class SetupNewClusterNodeOptions:
    """One node to be joined into a new cluster."""

    address: str
    services: list[str] = field(default_factory=list)


@dataclass
class SetupNewClusterOptions:
    """Settings for forming a cluster out of fresh nodes."""

    username: str
    password: str
    nodes: list[SetupNewClusterNodeOptions] = field(default_factory=list)
    kv_memory_quota_mb: int = 0
    index_memory_quota_mb: int = 0
    fts_memory_quota_mb: int = 0
    cbas_memory_quota_mb: int = 0
    eventing_memory_quota_mb: int = 0


def _wrap(message: str, exc: Exception) -> ClusterControlError:
    return ClusterControlError(f"{message}: {exc}")


class NodeManager:
    """Higher-level operations against one node."""

    def __init__(self, endpoint: str, poll_interval: float = 1.0) -> None:
        self.endpoint = endpoint
        self.poll_interval = poll_interval

    def controller(self) -> Controller:
        return Controller(self.endpoint, retry_delay=self.poll_interval)

    def wait_for_online(self, timeout: float | None = None) -> None:
        """Ping until the node answers; raise TimeoutError once ``timeout`` passes."""
        ctrl = self.controller()
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            try:
                ctrl.ping()
                return
            except ClusterControlError as exc:
                if deadline is not None and time.monotonic() >= deadline:
                    raise TimeoutError(
                        "context finished while waiting for node to start"
                    ) from exc
                time.sleep(self.poll_interval)

    def setup_one_node_cluster(self, options: SetupOneNodeClusterOptions) -> None:
        ctrl = self.controller()
        steps = [
            ("failed to setup services",
             lambda: ctrl.node_init(hostname="127.0.0.1", afamily="ipv4")),
            ("failed to configure memory quotas",
             lambda: ctrl.update_default_pool(
                 cluster_name="test-cluster",
                 kv_memory_quota_mb=options.kv_memory_quota_mb,
                 index_memory_quota_mb=options.index_memory_quota_mb,
                 fts_memory_quota_mb=options.fts_memory_quota_mb,
                 cbas_memory_quota_mb=options.cbas_memory_quota_mb,
                 eventing_memory_quota_mb=options.eventing_memory_quota_mb,
             )),
            ("failed to setup services",
             lambda: ctrl.setup_services(options.services)),
            ("failed to enable external listener",
             lambda: ctrl.enable_external_listener(afamily="ipv4", node_encryption="off")),
            ("failed to setup net config",
             lambda: ctrl.setup_net_config(afamily="ipv4", node_encryption="off")),
            ("failed to disable unused external listeners",
             ctrl.disable_unused_external_listeners),
            ("failed to setup net config",
             lambda: ctrl.update_index_settings(storage_mode="plasma")),
            ("failed to configure credentials",
             lambda: ctrl.update_web_settings(
                 username=options.username, password=options.password
             )),
        ]
        for message, step in steps:
            try:
                step()
            except ClusterControlError as exc:
                raise _wrap(message, exc) from exc

    def rebalance(self) -> None:
        ctrl = self.controller()
        try:
            otps = ctrl.list_node_otps()
        except ClusterControlError as exc:
            raise _wrap("failed to list node otps", exc) from exc
        try:
            ctrl.begin_rebalance(otps)
        except ClusterControlError as exc:
            raise _wrap("failed to start rebalance", exc) from exc

    def wait_for_no_running_tasks(self) -> None:
        ctrl = self.controller()
        while True:
            try:
                tasks = ctrl.list_tasks()
            except ClusterControlError as exc:
                raise _wrap("failed to fetch list of tasks", exc) from exc
            if all(task.status == "notRunning" for task in tasks):
                return
            time.sleep(self.poll_interval)


class ClusterManager:
    """Forms a cluster from freshly started nodes."""

    def __init__(self, logger: logging.Logger | None = None, poll_interval: float = 1.0) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.poll_interval = poll_interval

    def setup_new_cluster(self, options: SetupNewClusterOptions) -> None:
        if not options.nodes:
            raise ValueError("a cluster needs at least one node")

        first = options.nodes[0]
        first_mgr = NodeManager(
            f"http://{first.address}:{MGMT_PORT}", poll_interval=self.poll_interval
        )
        first_ctrl = first_mgr.controller()

        self.logger.info("setting up initial cluster node")
        try:
            first_mgr.setup_one_node_cluster(
                SetupOneNodeClusterOptions(
                    username=options.username,
                    password=options.password,
                    kv_memory_quota_mb=options.kv_memory_quota_mb,
                    index_memory_quota_mb=options.index_memory_quota_mb,
                    fts_memory_quota_mb=options.fts_memory_quota_mb,
                    cbas_memory_quota_mb=options.cbas_memory_quota_mb,
                    eventing_memory_quota_mb=options.eventing_memory_quota_mb,
                    services=list(first.services),
                )
            )
        except ClusterControlError as exc:
            raise _wrap("failed to configure the first node", exc) from exc

        if len(options.nodes) == 1:
            self.logger.info("only a single node in the cluster, skipping add+rebalance")
        else:
            self.logger.info("joining additional nodes to the cluster")
            for node in options.nodes:
                if node.address == first.address:
                    continue
                try:
                    first_ctrl.add_node(
                        address=node.address,
                        services=node.services,
                        username="",
                        server_group="0",
                    )
                except ClusterControlError as exc:
                    raise _wrap("failed to configure additional node", exc) from exc

            self.logger.info("initiating rebalance")
            try:
                first_mgr.rebalance()
            except ClusterControlError as exc:
                raise _wrap("failed to start rebalance", exc) from exc

            self.logger.info("waiting for rebalance completion")
            try:
                first_mgr.wait_for_no_running_tasks()
            except ClusterControlError as exc:
                raise _wrap("failed to wait for tasks to complete", exc) from exc

        self.logger.info("cluster setup completed")