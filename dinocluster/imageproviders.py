"""Image providers that pull server images from public and private registries."""

from __future__ import annotations

import base64
import json
import logging

from .dockerapi import DockerClient, DockerError, pull_and_log
from .imagedef import ImageDef, ImageProvider, ImageRef

_log = logging.getLogger(__name__)


class ImageProviderError(RuntimeError):
    """Raised when a provider cannot supply an image."""


class DockerHubImageProvider(ImageProvider):
    """Pulls released server images from the public hub."""

    def __init__(self, docker: DockerClient, logger: logging.Logger | None = None) -> None:
        self.docker = docker
        self.logger = logger or _log

    def get_image(self, definition: ImageDef) -> ImageRef:
        if definition.build_no != 0:
            raise ImageProviderError("cannot use dockerhub for non-ga releases")
        if definition.use_serverless:
            raise ImageProviderError("cannot use dockerhub for serverless releases")

        edition = "community" if definition.use_community_edition else "enterprise"
        image_path = f"couchbase:{edition}-{definition.version}"
        self.logger.debug("identified docker image to pull: %s", image_path)

        try:
            pull_and_log(self.docker, image_path, self.logger)
        except DockerError as exc:
            raise ImageProviderError(f"failed to pull from dockerhub registry: {exc}") from exc
        return ImageRef(image_path=image_path)


class GhcrImageProvider(ImageProvider):
    """Pulls internal server builds from the private registry."""

    def __init__(
        self,
        docker: DockerClient,
        username: str = "",
        password: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.docker = docker
        self.username = username
        self.password = password or ""
        self.logger = logger or _log

    def auth_string(self) -> str:
        """Return the base64-encoded JSON credentials the registry header expects."""
        config = {}
        if self.username:
            config["username"] = self.username
        if self.password:
            config["password"] = self.password
        encoded = json.dumps(config, separators=(",", ":")).encode("utf-8")
        return base64.b64encode(encoded).decode("ascii")

    def get_image(self, definition: ImageDef) -> ImageRef:
        if not self.username and not self.password:
            raise ImageProviderError("cannot use ghcr without credentials")
        if definition.build_no == 0:
            raise ImageProviderError("cannot use ghcr for ga releases")

        server_version = f"{definition.version}-{definition.build_no}"
        if definition.use_community_edition:
            server_version = "community-" + server_version

        self.logger.debug("pulling image from ghcr")
        image_path = f"ghcr.io/cb-vanilla/server:{server_version}"
        try:
            pull_and_log(self.docker, image_path, self.logger, registry_auth=self.auth_string())
        except DockerError as exc:
            raise ImageProviderError(f"failed to pull from ghcr registry: {exc}") from exc
        return ImageRef(image_path=image_path)


class HybridImageProvider(ImageProvider):
    """Tries each registry in turn and returns the first image obtained."""

    def __init__(
        self,
        docker: DockerClient,
        ghcr_username: str = "",
        ghcr_password: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.logger = logger or _log
        self.providers: list[ImageProvider] = [
            DockerHubImageProvider(docker, self.logger),
            GhcrImageProvider(docker, ghcr_username, ghcr_password, self.logger),
        ]

    def get_image(self, definition: ImageDef) -> ImageRef:
        for provider in self.providers:
            try:
                return provider.get_image(definition)
            except (ImageProviderError, DockerError) as exc:
                self.logger.debug("hybrid provider variant failed to provide image: %s", exc)
        raise ImageProviderError("all providers failed to provide the image")