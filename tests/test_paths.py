import re

import pytest

from nix2container.paths import (
    clean_path,
    file_path_to_tar_path,
    join_path,
    remove_nix_case_hack_suffix,
    split_path,
)
from nix2container.types import PathOptions, Rewrite


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/nix", ["", "nix"]),
        ("/nix/store", ["", "nix", "store"]),
        ("/", [""]),
        ("relative", ["relative"]),
        ("relative/file", ["relative", "file"]),
        ("relative/file/", ["relative", "file"]),
    ],
)
def test_split(path, expected):
    assert split_path(path) == expected


def test_file_path_to_tar_path():
    options = PathOptions(
        rewrite=Rewrite(
            regex="^/nix/store/x896lxz471i4rgicjxygfh37a0appv7l-nix-database",
            repl="",
        ),
        perms=[],
    )
    path = "/nix/store/x896lxz471i4rgicjxygfh37a0appv7l-nix-database"
    assert file_path_to_tar_path(path, options) == ""
    assert file_path_to_tar_path("/", None) == "/"


def test_file_path_to_tar_path_without_regex_is_identity():
    options = PathOptions(rewrite=Rewrite(regex="", repl="ignored"))
    assert file_path_to_tar_path("/nix/store/a", options) == "/nix/store/a"


def test_file_path_to_tar_path_group_references():
    options = PathOptions(rewrite=Rewrite(regex="^/nix/store/([^/]*)", repl="/$1"))
    assert file_path_to_tar_path("/nix/store/abc/bin", options) == "/abc/bin"
    named = PathOptions(rewrite=Rewrite(regex="^/nix/store/(?P<h>[^/]*)", repl="/${h}$$"))
    assert file_path_to_tar_path("/nix/store/abc/bin", named) == "/abc$/bin"
    missing = PathOptions(rewrite=Rewrite(regex="^/nix/store/", repl="$9x"))
    assert file_path_to_tar_path("/nix/store/abc", missing) == "abc"


def test_file_path_to_tar_path_invalid_regex():
    options = PathOptions(rewrite=Rewrite(regex="*", repl=""))
    with pytest.raises(re.error):
        file_path_to_tar_path("/nix", options)


@pytest.mark.parametrize(
    "path, expected",
    [
        ("filename~nix~case~hack~1", "filename"),
        ("/path~nix~case~hack~1/filename", "/path/filename"),
        ("filename~nix~", "filename~nix~"),
    ],
)
def test_remove_nix_case_hack_suffix(path, expected):
    assert remove_nix_case_hack_suffix(path) == expected


@pytest.mark.parametrize(
    "path, expected",
    [("", "."), ("//nix", "/nix"), ("a/../b/", "b"), ("/..", "/"), ("./a", "a")],
)
def test_clean_path(path, expected):
    assert clean_path(path) == expected


def test_join_path():
    assert join_path("", "") == ""
    assert join_path("", "..") == ".."
    assert join_path("/", "nix") == "/nix"
    assert join_path("/nix", "", "store") == "/nix/store"