"""Unit tests for core/utils/slug.py"""

import pytest

from sitepub.core.utils.slug import slug_component


@pytest.mark.parametrize("name,expected", [
    ("Hello World",              "hello-world"),
    ("rust-errors",              "rust-errors"),
    ("  Leading and trailing  ", "leading-and-trailing"),
    ("under_score",              "under-score"),
    ("Special! @#$ chars",       "special-chars"),
    ("already--double",          "already-double"),
    ("v1.2 release",             "v1.2-release"),
    ("Café Crème",               "café-crème"),
    ("Straße",                   "strasse"),
    ("ＷＩＤＥ",                  "wide"),
])
def test_slug_component(name, expected):
    assert slug_component(name) == expected


@pytest.mark.parametrize("name", ["!!!", ".", "..", "-._"])
def test_slug_component_empty_when_nothing_usable(name):
    assert slug_component(name) == ""


def test_slug_component_never_contains_separators():
    """Slashes and edge dots cannot leak into an output path."""
    assert slug_component("../etc/passwd") == "etcpasswd"
    assert slug_component("..hidden..") == "hidden"
