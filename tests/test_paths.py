"""
Tests for request URL to logical path conversion
"""

import pytest

from davserve.paths import resolve


def test_empty_url_maps_to_root():
    assert resolve("", "/dav") == "/"
    assert resolve("", "") == "/"


def test_prefix_is_stripped_and_slashes_trimmed():
    assert resolve("/dav/docs/readme.txt", "/dav") == "docs/readme.txt"
    assert resolve("/dav/docs/", "/dav") == "docs"
    assert resolve("/dav//a//", "/dav") == "a"


def test_exact_prefix_yields_empty_path():
    assert resolve("/dav", "/dav") == ""
    assert resolve("/dav/", "/dav") == ""


def test_unmatched_prefix_falls_back_to_root():
    assert resolve("/other/file.txt", "/dav") == "/"
    assert resolve("/da", "/dav") == "/"


def test_empty_prefix_keeps_whole_path():
    assert resolve("/a/b.txt", "") == "a/b.txt"
    assert resolve("/", "") == ""


@pytest.mark.parametrize("url", ["/dav/../etc/passwd", "/dav/a/./b"])
def test_dot_segments_are_left_for_the_backend(url):
    # Cleaning happens when the backend sanitizes the name
    assert resolve(url, "/dav") == url[len("/dav/"):]


def test_prefix_is_a_plain_string_match():
    assert resolve("/davfiles/x", "/dav") == "files/x"
