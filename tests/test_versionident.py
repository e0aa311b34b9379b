import pytest

from dinocluster.versionident import Version, VersionError, identify


@pytest.mark.parametrize(
    "text, expected",
    [
        ("7.0.0", Version("7.0.0", 0, False, False)),
        ("7.2.0", Version("7.2.0", 0, False, False)),
        ("7.2", Version("7.2", 0, False, False)),
        ("community-7.2.0", Version("7.2.0", 0, True, False)),
        ("7.2.0-14", Version("7.2.0", 14, False, False)),
        ("community-7.2.0-14", Version("7.2.0", 14, True, False)),
        ("7.2.0-serverless", Version("7.2.0", 0, False, True)),
        ("community-7.2.0-14-serverless", Version("7.2.0", 14, True, True)),
    ],
)
def test_identify(text, expected):
    assert identify(text) == expected


@pytest.mark.parametrize("text", ["7", "invalid"])
def test_identify_rejects(text):
    with pytest.raises(VersionError):
        identify(text)


def test_unknown_edition():
    with pytest.raises(VersionError, match="edition"):
        identify("foo-7.2.0")


def test_bad_build_number():
    with pytest.raises(VersionError, match="build number"):
        identify("7.2.0-abc")


def test_too_many_parts():
    with pytest.raises(VersionError, match="major.minor"):
        identify("community-7.2.0-14-extra")


def test_version_error_is_value_error():
    with pytest.raises(ValueError):
        identify("serverless")