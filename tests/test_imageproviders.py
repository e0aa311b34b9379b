import base64
import json

import pytest

from dinocluster.dockerapi import DockerError
from dinocluster.imagedef import ImageDef, ImageRef
from dinocluster.imageproviders import (
    DockerHubImageProvider,
    GhcrImageProvider,
    HybridImageProvider,
    ImageProviderError,
)


class FakeDocker:
    def __init__(self, fail=()):
        self.pulls = []
        self.fail = set(fail)

    def pull_image(self, ref, registry_auth=""):
        self.pulls.append((ref, registry_auth))
        if ref in self.fail:
            raise DockerError("boom")
        return iter([{"status": "Pull complete"}])


def ghcr(docker):
    password = "password"
    return GhcrImageProvider(docker, username="user", password=password)


def test_dockerhub_enterprise():
    docker = FakeDocker()
    ref = DockerHubImageProvider(docker).get_image(ImageDef("7.2.0"))
    assert ref == ImageRef("couchbase:enterprise-7.2.0")
    assert docker.pulls == [("couchbase:enterprise-7.2.0", "")]


def test_dockerhub_community():
    docker = FakeDocker()
    ref = DockerHubImageProvider(docker).get_image(
        ImageDef("7.2.0", use_community_edition=True)
    )
    assert ref.image_path == "couchbase:community-7.2.0"


@pytest.mark.parametrize(
    "definition, message",
    [
        (ImageDef("7.2.0", build_no=14), "non-ga"),
        (ImageDef("7.2.0", use_serverless=True), "serverless"),
    ],
)
def test_dockerhub_refuses(definition, message):
    docker = FakeDocker()
    with pytest.raises(ImageProviderError, match=message):
        DockerHubImageProvider(docker).get_image(definition)
    assert docker.pulls == []


def test_dockerhub_pull_failure():
    docker = FakeDocker(fail={"couchbase:enterprise-7.2.0"})
    with pytest.raises(ImageProviderError, match="dockerhub"):
        DockerHubImageProvider(docker).get_image(ImageDef("7.2.0"))


def test_ghcr_auth_string_encodes_credentials():
    provider = ghcr(FakeDocker())
    decoded = base64.b64decode(provider.auth_string())
    assert json.loads(decoded) == {"username": "user", "password": "password"}
    assert b" " not in decoded


def test_ghcr_auth_string_omits_empty_fields():
    password = "password"
    provider = GhcrImageProvider(FakeDocker(), password=password)
    assert json.loads(base64.b64decode(provider.auth_string())) == {"password": "password"}


def test_ghcr_build_image():
    docker = FakeDocker()
    provider = ghcr(docker)
    ref = provider.get_image(ImageDef("7.2.0", build_no=14))
    assert ref.image_path == "ghcr.io/cb-vanilla/server:7.2.0-14"
    assert docker.pulls == [(ref.image_path, provider.auth_string())]


def test_ghcr_community_build_image():
    ref = ghcr(FakeDocker()).get_image(
        ImageDef("7.2.0", build_no=14, use_community_edition=True)
    )
    assert ref.image_path == "ghcr.io/cb-vanilla/server:community-7.2.0-14"


def test_ghcr_requires_credentials():
    with pytest.raises(ImageProviderError, match="credentials"):
        GhcrImageProvider(FakeDocker()).get_image(ImageDef("7.2.0", build_no=14))


def test_ghcr_refuses_ga():
    with pytest.raises(ImageProviderError, match="ga releases"):
        ghcr(FakeDocker()).get_image(ImageDef("7.2.0"))


def test_hybrid_uses_dockerhub_for_ga():
    docker = FakeDocker()
    password = "password"
    provider = HybridImageProvider(docker, "user", password)
    assert provider.get_image(ImageDef("7.2.0")) == ImageRef("couchbase:enterprise-7.2.0")


def test_hybrid_falls_back_to_ghcr_for_builds():
    docker = FakeDocker()
    password = "password"
    provider = HybridImageProvider(docker, "user", password)
    ref = provider.get_image(ImageDef("7.2.0", build_no=14))
    assert ref.image_path == "ghcr.io/cb-vanilla/server:7.2.0-14"
    assert [pull[0] for pull in docker.pulls] == [ref.image_path]


def test_hybrid_fails_when_all_fail():
    docker = FakeDocker(fail={"couchbase:enterprise-7.2.0"})
    password = "password"
    provider = HybridImageProvider(docker, "user", password)
    with pytest.raises(ImageProviderError, match="all providers failed"):
        provider.get_image(ImageDef("7.2.0"))


def test_hybrid_fails_for_build_without_credentials():
    with pytest.raises(ImageProviderError, match="all providers failed"):
        HybridImageProvider(FakeDocker()).get_image(ImageDef("7.2.0", build_no=14))