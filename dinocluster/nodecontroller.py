"""HTTP client for the management REST interface of a single server node."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import urlencode

import requests

USERNAME = "Administrator"
_PASSWORD = "password"
MAX_RETRIES = 10
_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class ClusterControlError(RuntimeError):
    """Raised when a management request fails."""


@dataclass(frozen=True)
class Task:
    """A server-side task and its status."""

    status: str


def _encode_form(fields: dict[str, str]) -> str:
    return urlencode(sorted(fields.items()))


class Controller:
    """Issues management requests against one node endpoint."""

    def __init__(self, endpoint: str, retry_delay: float = 1.0) -> None:
        self.endpoint = endpoint
        self.retry_delay = retry_delay

    def _attempt(self, method: str, path: str, body: str | None, decode: bool) -> Any:
        headers = {"Content-Type": _FORM_CONTENT_TYPE} if body is not None else {}
        try:
            resp = requests.request(
                method,
                self.endpoint + path,
                data=body,
                headers=headers,
                auth=(USERNAME, _PASSWORD),
            )
        except requests.RequestException as exc:
            raise ClusterControlError(f"failed to execute request: {exc}") from exc

        if resp.status_code != 200:
            raise ClusterControlError(
                f"non-200 status code encountered: {resp.status_code} {resp.text}"
            )

        if not decode:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise ClusterControlError(f"failed to decode response: {exc}") from exc

    def _request(
        self,
        method: str,
        path: str,
        body: str | None = None,
        max_retries: int = MAX_RETRIES,
        decode: bool = False,
    ) -> Any:
        retries = 0
        while True:
            try:
                return self._attempt(method, path, body, decode)
            except ClusterControlError as exc:
                if max_retries == 0:
                    raise
                if retries >= max_retries:
                    raise ClusterControlError(
                        f"failed after {max_retries} retries: {exc}"
                    ) from exc
                retries += 1
                time.sleep(self.retry_delay)

    def _get(self, path: str) -> Any:
        return self._request("GET", path, decode=True)

    def _post_form(self, path: str, fields: dict[str, str]) -> None:
        self._request("POST", path, body=_encode_form(fields))

    def ping(self) -> None:
        """Check once that the node answers; raise if it does not."""
        self._request("GET", "/pools", max_retries=0)

    def node_init(self, hostname: str = "", afamily: str = "") -> None:
        fields = {}
        if hostname:
            fields["hostname"] = hostname
        if afamily:
            fields["afamily"] = afamily
        self._post_form("/nodeInit", fields)

    def update_default_pool(
        self,
        cluster_name: str = "",
        kv_memory_quota_mb: int = 0,
        index_memory_quota_mb: int = 0,
        fts_memory_quota_mb: int = 0,
        cbas_memory_quota_mb: int = 0,
        eventing_memory_quota_mb: int = 0,
    ) -> None:
        fields = {}
        if cluster_name:
            fields["clusterName"] = cluster_name
        quotas = {
            "memoryQuota": kv_memory_quota_mb,
            "indexMemoryQuota": index_memory_quota_mb,
            "ftsMemoryQuota": fts_memory_quota_mb,
            "cbasMemoryQuota": cbas_memory_quota_mb,
            "eventingMemoryQuota": eventing_memory_quota_mb,
        }
        fields.update({key: str(value) for key, value in quotas.items() if value > 0})
        self._post_form("/pools/default", fields)

    def enable_external_listener(self, afamily: str = "", node_encryption: str = "") -> None:
        self._post_form(
            "/node/controller/enableExternalListener",
            self._net_fields(afamily, node_encryption),
        )

    def setup_net_config(self, afamily: str = "", node_encryption: str = "") -> None:
        self._post_form(
            "/node/controller/setupNetConfig",
            self._net_fields(afamily, node_encryption),
        )

    @staticmethod
    def _net_fields(afamily: str, node_encryption: str) -> dict[str, str]:
        fields = {}
        if afamily:
            fields["afamily"] = afamily
        if node_encryption:
            fields["nodeEncryption"] = node_encryption
        return fields

    def disable_unused_external_listeners(self) -> None:
        self._post_form("/node/controller/disableUnusedExternalListeners", {})

    def update_index_settings(self, storage_mode: str = "") -> None:
        fields = {"storageMode": storage_mode} if storage_mode else {}
        self._post_form("/settings/indexes", fields)

    def update_web_settings(self, username: str = "", password: str | None = None) -> None:
        fields = {}
        if username:
            fields["username"] = username
        if password:
            fields["password"] = password
        fields["port"] = "SAME"
        self._post_form("/settings/web", fields)

    def setup_services(self, services: Iterable[str] = ()) -> None:
        services = list(services)
        fields = {"services": ",".join(services)} if services else {}
        self._post_form("/node/controller/setupServices", fields)

    def add_node(
        self,
        address: str,
        services: Iterable[str] = (),
        username: str = "",
        password: str | None = None,
        server_group: str = "0",
    ) -> None:
        fields = {
            "hostname": address,
            "services": ",".join(services),
            "user": username,
            "password": password or "",
        }
        self._post_form(f"/pools/default/serverGroups/{server_group}/addNode", fields)

    def list_node_otps(self) -> list[str]:
        data = self._get("/pools/default") or {}
        return [node.get("otpNode", "") for node in data.get("nodes") or []]

    def begin_rebalance(self, known_node_otps: Iterable[str]) -> None:
        self._post_form("/controller/rebalance", {"knownNodes": ",".join(known_node_otps)})

    def list_tasks(self) -> list[Task]:
        data = self._get("/pools/default/tasks") or []
        return [Task(status=entry.get("status", "")) for entry in data]