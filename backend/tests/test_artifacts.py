from __future__ import annotations
import pytest
from conftest import MemoryBlobStore
from portal.services.artifacts import ArtifactLinkResolver

store = MemoryBlobStore(bucket="uploads")
resolver = ArtifactLinkResolver("uploads", store.public_url)
CANONICAL = "https://files.example.test/uploads/x.jpg"


def test_none_and_empty_resolve_to_none():
    assert resolver.resolve(None) is None
    assert resolver.resolve("") is None
    assert resolver.resolve("uploads/") is None
    assert resolver.resolve("/") is None


@pytest.mark.parametrize("ref", [
    "x.jpg",
    "/x.jpg",
    "uploads/x.jpg",
    "public/uploads/x.jpg",
    "https://abc.supabase.co/storage/v1/object/public/uploads/x.jpg",
    "http://host/storage/v1/object/public/uploads/x.jpg",
    "https://files.example.test/uploads/x.jpg",
])
def test_all_reference_shapes_resolve_to_one_url(ref):
    assert resolver.resolve(ref) == CANONICAL


def test_nested_keys_keep_their_folders():
    assert resolver.resolve("public/uploads/profile-pics/1700.jpg") == "https://files.example.test/uploads/profile-pics/1700.jpg"


def test_resolving_a_resolved_url_is_stable():
    once = resolver.resolve("public/uploads/source-zips/my file.zip")
    assert once == "https://files.example.test/uploads/source-zips/my%20file.zip"
    assert resolver.resolve(once) == once
    assert resolver.normalize_key(once) == resolver.normalize_key("source-zips/my file.zip")


def test_folder_named_like_the_bucket_survives_re_resolution():
    once = resolver.resolve("uploads/uploads/x.jpg")
    assert once == "https://files.example.test/uploads/uploads/x.jpg"
    assert resolver.resolve(once) == once
    assert resolver.resolve("public/uploads/uploads/x.jpg") == once
    assert resolver.resolve("https://abc.supabase.co/storage/v1/object/public/uploads/uploads/x.jpg") == once


def test_other_bucket_prefix_is_not_stripped():
    assert resolver.normalize_key("avatars/x.jpg") == "avatars/x.jpg"
