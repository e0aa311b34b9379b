import pytest

from dinocluster.imagedef import (
    ImageDef,
    ImageProvider,
    ImageRef,
    compare_image_defs,
    compare_semver,
)


@pytest.mark.parametrize(
    "a, b, expected",
    [
        ("v1.2.3", "v1.2.3", 0),
        ("7.2.0", "7.2.0", 0),
        ("7.10.0", "7.9.0", 1),
        ("7.1.0", "7.2.0", -1),
        ("7.2", "7.2.0", 0),
        ("7", "7.0.0", 0),
        ("1.0.0-alpha", "1.0.0", -1),
        ("1.0.0-alpha.1", "1.0.0-alpha", 1),
        ("1.0.0-1", "1.0.0-alpha", -1),
        ("1.0.0-2", "1.0.0-10", -1),
        ("1.0.0+build", "1.0.0", 0),
        ("invalid", "1.0.0", -1),
        ("invalid", "also-invalid", 0),
        ("1.0.0-01", "1.0.0-1", -1),
    ],
)
def test_compare_semver(a, b, expected):
    assert compare_semver(a, b) == expected


def test_compare_semver_is_antisymmetric():
    versions = ["1.0.0", "1.0.0-rc.1", "2.1", "0.9.9", "bad", "7.2.0+x"]
    for a in versions:
        for b in versions:
            assert compare_semver(a, b) == -compare_semver(b, a)


def test_equal_defs():
    a = ImageDef("7.2.0", 14, True, True)
    assert compare_image_defs(a, ImageDef("7.2.0", 14, True, True)) == 0


def test_version_dominates():
    assert compare_image_defs(ImageDef("7.1.0", 99), ImageDef("7.2.0", 1)) == -1


def test_build_number_order():
    assert compare_image_defs(ImageDef("7.2.0", 14), ImageDef("7.2.0", 15)) == -1
    assert compare_image_defs(ImageDef("7.2.0", 15), ImageDef("7.2.0", 14)) == 1


def test_community_sorts_first():
    community = ImageDef("7.2.0", use_community_edition=True)
    enterprise = ImageDef("7.2.0")
    assert compare_image_defs(community, enterprise) == -1
    assert compare_image_defs(enterprise, community) == 1


def test_serverless_sorts_last():
    plain = ImageDef("7.2.0")
    serverless = ImageDef("7.2.0", use_serverless=True)
    assert compare_image_defs(plain, serverless) == -1
    assert compare_image_defs(serverless, plain) == 1


def test_image_provider_is_abstract():
    with pytest.raises(TypeError):
        ImageProvider()


def test_image_provider_subclass():
    class Fixed(ImageProvider):
        def get_image(self, definition):
            return ImageRef(image_path=f"couchbase:enterprise-{definition.version}")

    assert Fixed().get_image(ImageDef("7.2.0")) == ImageRef("couchbase:enterprise-7.2.0")