import pytest

from knitboard.core.fabrics import (
    DEFAULT_STRIP_KEYWORDS,
    FabricLookup,
    find_unknown_fabrics,
    keywords_from_text,
    keywords_to_text,
    new_fabric,
    parse_fabric_name,
)
from knitboard.core.models import Fabric, ImportRow


@pytest.mark.parametrize(
    "full_name,code,short",
    [
        ("[F-12] Single Jersey 30/1", "F-12", "Single Jersey 30/1"),
        ("[F-12] خام Single Jersey ()", "F-12", "Single Jersey"),
        ("ليكرا Rib  1x1", "", "Rib 1x1"),
        ("Plain", "", "Plain"),
        ("", "", ""),
    ],
)
def test_parse_fabric_name(full_name, code, short):
    assert parse_fabric_name(full_name) == (code, short)


def test_parse_fabric_name_with_custom_keywords():
    assert parse_fabric_name("[X1] Dyed Pique", keywords=["Dyed "]) == ("X1", "Pique")
    assert parse_fabric_name("[X1] خام Pique", keywords=[]) == ("X1", "خام Pique")


def test_find_unknown_fabrics_is_exact_and_ordered():
    rows = [
        ImportRow(fabric=name, production=1.0, customer="A", scrap=0.0, work_center="M1")
        for name in ["Rib", "Jersey", "rib", "Rib", ""]
    ]
    known = [Fabric(name="Jersey")]
    assert find_unknown_fabrics(rows, known) == ["Rib", "rib"]
    assert find_unknown_fabrics(rows, ["Jersey", "Rib", "rib"]) == []


def test_new_fabric_derives_code_and_short_name():
    fabric = new_fabric(" [F1] خام Jersey ")
    assert fabric == Fabric(name="[F1] خام Jersey", code="F1", short_name="Jersey")
    assert fabric.display_name == "Jersey"


def test_lookup_falls_back_to_raw_name():
    lookup = FabricLookup([Fabric(name="[F1] Jersey", code="F1", short_name="Jersey"), Fabric(name="Rib")])
    assert lookup.display_name("[F1] Jersey") == "Jersey"
    assert lookup.display_name("Rib") == "Rib"
    assert lookup.display_name("Other") == "Other"
    assert "Rib" in lookup
    assert "Other" not in lookup


def test_keyword_text_keeps_surrounding_spaces():
    text = keywords_to_text(DEFAULT_STRIP_KEYWORDS)
    assert tuple(keywords_from_text(text)) == DEFAULT_STRIP_KEYWORDS
    assert keywords_from_text("Dyed \n\n  \r\nخام") == ["Dyed ", "خام"]
    assert keywords_from_text(None) == []


def test_trailing_space_keyword_needs_a_following_word():
    assert parse_fabric_name("Rib بدون Lycra")[1] == "Rib Lycra"
    assert parse_fabric_name("Rib بدون")[1] == "Rib بدون"
