"""A single server node installed and run on the local macOS machine."""

from __future__ import annotations

import logging
import os
import platform
import shutil
import subprocess
from dataclasses import dataclass

import requests

from .clustersetup import MGMT_PORT, NodeManager
from .deployment import ConnectInfo, Deployer, LocalClusterInfo
from .versionident import VersionError, identify

INSTALLER_DIR = "/tmp/cbinstallers"
RELEASES_URL = "https://packages.couchbase.com/releases"
APP_BUNDLE_NAME = "Couchbase Server.app"
VOLUME_PREFIX = "Couchbase"
LOCAL_CLUSTER_ID = "a"
LOCAL_ADDRESS = "127.0.0.1"
_DOWNLOAD_CHUNK = 64 * 1024

# Keys are lower-cased machine names; values are the architecture tags used in
# installer file names.
_ARCH_TAGS = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "arm": "arm64",
    "armv6l": "arm64",
    "armv7l": "arm64",
}

_log = logging.getLogger(__name__)


class LocalDeployError(RuntimeError):
    """Raised when the local server cannot be installed, started or managed."""


@dataclass(frozen=True)
class ServerDef:
    """Which server release to install locally."""

    version: str
    build_no: int = 0
    use_community_edition: bool = False
    use_serverless: bool = False


def exec_and_log(logger: logging.Logger | None, name: str, *args: str) -> None:
    """Run a command, logging its output line by line; raise if it fails."""
    logger = logger or _log
    logger.debug("executing command %s %s", name, list(args))
    try:
        result = subprocess.run(
            [name, *args],
            capture_output=True,
            text=True,
            errors="replace",
        )
    except OSError as exc:
        raise LocalDeployError(f"failed to execute {name}: {exc}") from exc

    for line in (result.stdout or "").splitlines():
        logger.debug("exec output: %s", line)
    for line in (result.stderr or "").splitlines():
        logger.debug("exec error output: %s", line)

    if result.returncode != 0:
        raise LocalDeployError(f"{name} exited with status {result.returncode}")


def installer_name(definition: ServerDef, machine: str) -> str:
    """Return the file name of the disk image installer for this machine."""
    arch_tag = _ARCH_TAGS.get(machine.lower())
    if arch_tag is None:
        raise LocalDeployError("unsupported architecture")
    edition = "community" if definition.use_community_edition else "enterprise"
    return f"couchbase-server-{edition}_{definition.version}-macos_{arch_tag}.dmg"


class OsxController:
    """Installs, launches and quits the server application on macOS."""

    installer_dir = INSTALLER_DIR
    volumes_dir = "/Volumes"
    applications_dir = "/Applications"
    releases_url = RELEASES_URL
    online_timeout: float | None = None
    poll_interval = 1.0

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or _log
        self.machine = platform.machine()

    @property
    def app_path(self) -> str:
        return os.path.join(self.applications_dir, APP_BUNDLE_NAME)

    def is_installed(self) -> bool:
        # Reports an installation whenever the application bundle cannot be found.
        return not os.path.exists(self.app_path)

    def _server_volumes(self) -> list[str]:
        try:
            names = sorted(os.listdir(self.volumes_dir))
        except OSError as exc:
            raise LocalDeployError(f"failed to list mounts: {exc}") from exc
        return [name for name in names if name.startswith(VOLUME_PREFIX)]

    def _cleanup_previous(self) -> None:
        for name in self._server_volumes():
            try:
                exec_and_log(
                    self.logger, "hdiutil", "detach", os.path.join(self.volumes_dir, name)
                )
            except LocalDeployError as exc:
                raise LocalDeployError(f"failed to detach existing volume: {exc}") from exc

        try:
            if os.path.isdir(self.app_path) and not os.path.islink(self.app_path):
                shutil.rmtree(self.app_path)
            elif os.path.lexists(self.app_path):
                os.remove(self.app_path)
        except OSError as exc:
            raise LocalDeployError(f"failed to remove existing app file: {exc}") from exc

    def _download(self, url: str, path: str) -> None:
        self.logger.debug("downloading installer from %s", url)
        try:
            os.makedirs(self.installer_dir, exist_ok=True)
        except OSError as exc:
            raise LocalDeployError(f"failed to create installers path: {exc}") from exc

        size = 0
        try:
            with open(path, "wb") as out, requests.get(url, stream=True) as resp:
                for chunk in resp.iter_content(_DOWNLOAD_CHUNK):
                    out.write(chunk)
                    size += len(chunk)
        except requests.RequestException as exc:
            raise LocalDeployError(f"failed to fetch installer via http: {exc}") from exc
        except OSError as exc:
            raise LocalDeployError(f"failed to download installer: {exc}") from exc
        self.logger.debug("downloaded installer (%d bytes)", size)

    def start(self, definition: ServerDef) -> None:
        """Install the requested release, launch it and wait until it answers."""
        if definition.build_no != 0:
            raise LocalDeployError("only ga releases are currently supported")
        if definition.use_serverless:
            raise LocalDeployError("serverless is not currently supported")

        name = installer_name(definition, self.machine)
        url = f"{self.releases_url}/{definition.version}/{name}"
        path = os.path.join(self.installer_dir, name)

        try:
            self._cleanup_previous()
        except LocalDeployError as exc:
            raise LocalDeployError(f"failed to cleanup previous running server: {exc}") from exc

        if os.path.exists(path):
            self.logger.debug("found installer on disk")
        else:
            self._download(url, path)

        try:
            exec_and_log(self.logger, "hdiutil", "attach", path)
        except LocalDeployError as exc:
            raise LocalDeployError(f"failed to mount volume: {exc}") from exc

        volumes = self._server_volumes()
        if not volumes:
            raise LocalDeployError("failed to find mounted volume")
        mount_path = os.path.join(self.volumes_dir, volumes[-1])

        try:
            app_files = [f for f in sorted(os.listdir(mount_path)) if f.endswith("app")]
        except OSError as exc:
            raise LocalDeployError(f"failed to find app in volume: {exc}") from exc
        if not app_files:
            raise LocalDeployError("failed to find app in volume")
        app_file = app_files[-1]

        steps = [
            ("failed to copy app file",
             ("cp", "-R", os.path.join(mount_path, app_file), self.applications_dir)),
            ("failed to detach volume", ("hdiutil", "detach", mount_path)),
            ("failed to launch server",
             ("open", "-a", os.path.join(self.applications_dir, app_file))),
        ]
        for message, command in steps:
            try:
                exec_and_log(self.logger, *command)
            except LocalDeployError as exc:
                raise LocalDeployError(f"{message}: {exc}") from exc

        manager = NodeManager(
            f"http://{LOCAL_ADDRESS}:{MGMT_PORT}", poll_interval=self.poll_interval
        )
        try:
            manager.wait_for_online(timeout=self.online_timeout)
        except TimeoutError as exc:
            raise LocalDeployError(f"failed to wait for node readiness: {exc}") from exc

    def stop(self) -> None:
        """Ask the server application to quit, ignoring any failure."""
        try:
            exec_and_log(self.logger, "osascript", "-e", 'quit app "Couchbase Server"')
        except LocalDeployError as exc:
            self.logger.debug("ignoring failure to quit server: %s", exc)


class LocalDeployer(Deployer):
    """Manages the one-node cluster that runs on this machine."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or _log
        self.controller = OsxController(self.logger)

    def list_clusters(self) -> list[LocalClusterInfo]:
        return [LocalClusterInfo()] if self.controller.is_installed() else []

    def start_server(self, version: str) -> None:
        """Install and start the server release named by ``version``."""
        try:
            info = identify(version)
        except VersionError as exc:
            raise LocalDeployError(f"failed to identify version: {exc}") from exc

        try:
            self.controller.start(
                ServerDef(
                    version=info.version,
                    build_no=info.build_no,
                    use_community_edition=info.community_edition,
                    use_serverless=info.serverless,
                )
            )
        except LocalDeployError as exc:
            raise LocalDeployError(f"failed to start cluster: {exc}") from exc

    def remove_cluster(self, cluster_id: str) -> None:
        if cluster_id != LOCAL_CLUSTER_ID:
            raise LocalDeployError("invalid cluster-id")
        self.controller.stop()

    def remove_all(self) -> None:
        self.controller.stop()

    def cleanup(self) -> None:
        """Local clusters never expire, so there is nothing to clean up."""

    def get_connect_info(self, cluster_id: str) -> ConnectInfo:
        return ConnectInfo(
            conn_str=f"couchbase://{LOCAL_ADDRESS}",
            mgmt=f"http://{LOCAL_ADDRESS}:{MGMT_PORT}",
        )