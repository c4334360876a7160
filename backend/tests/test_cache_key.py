import pytest

from domain.value_objects import CachePolicy, SourceFile, compute_cache_key, is_valid_cache_key
from exceptions import ValidationError


def test_cache_key_is_deterministic():
    assert compute_cache_key("alice", "/Movies/a.mp4", 1700000000) == \
        compute_cache_key("alice", "/Movies/a.mp4", 1700000000)


def test_cache_key_is_md5_of_owner_path_mtime():
    # md5("alice:/a.mp4:100")
    import hashlib
    expected = hashlib.md5(b"alice:/a.mp4:100").hexdigest()
    assert compute_cache_key("alice", "/a.mp4", 100) == expected


def test_cache_key_truncates_fractional_mtime():
    assert compute_cache_key("alice", "/a.mp4", 100.9) == compute_cache_key("alice", "/a.mp4", 100)


def test_cache_key_changes_with_each_component():
    base = compute_cache_key("alice", "/a.mp4", 100)
    assert compute_cache_key("bob", "/a.mp4", 100) != base
    assert compute_cache_key("alice", "/b.mp4", 100) != base
    assert compute_cache_key("alice", "/a.mp4", 101) != base


@pytest.mark.parametrize("value,valid", [
    ("0123456789abcdef0123456789abcdef", True),
    ("0123456789ABCDEF0123456789ABCDEF", False),
    ("0123456789abcdef", False),
    ("../../etc/passwd", False),
    ("", False),
])
def test_is_valid_cache_key(value, valid):
    assert is_valid_cache_key(value) is valid


def test_source_file_names():
    source = SourceFile(owner="alice", path="/Movies/clip.final.mp4", size=10, mtime=100)
    assert source.directory == "/Movies"
    assert source.basename == "clip.final.mp4"
    assert source.stem == "clip.final"
    assert source.cache_key == compute_cache_key("alice", "/Movies/clip.final.mp4", 100)


def test_source_file_at_root():
    source = SourceFile(owner="alice", path="/clip.mp4", size=10, mtime=100)
    assert source.directory == "/"


def test_source_file_rejects_relative_path():
    with pytest.raises(ValueError):
        SourceFile(owner="alice", path="clip.mp4", size=10, mtime=100)


def test_cache_policy_defaults_and_round_trip():
    policy = CachePolicy.from_dict({"location": "home", "resolutions": ["720p"]})
    assert policy.location == "home"
    assert policy.resolutions == ("720p",)
    assert CachePolicy.from_dict(policy.to_dict()) == policy


def test_cache_policy_custom_requires_path():
    with pytest.raises(ValidationError):
        CachePolicy(location="custom")


def test_cache_policy_rejects_unknown_resolution():
    with pytest.raises(ValidationError):
        CachePolicy(resolutions=("4320p",))
