import pytest

from normalizer import normalize


@pytest.mark.parametrize("name", [
    "Zone Géographique",
    "zone geographique",
    "ZONE GÉOGRAPHIQUE",
    "  zone   géographique ",
    "la Zone Géographique",
])
def test_variants_share_one_form(name):
    assert normalize(name) == "zone geographique"


@pytest.mark.parametrize("name", [
    "Zone Géographique",
    "la la Zone",
    "Le",
    "Des Options",
    "Valeur à Neuf",
    "  ",
    "",
    "İstanbul",
    "Ｆｕｌｌｗｉｄｔｈ",
])
def test_idempotent(name):
    once = normalize(name)
    assert normalize(once) == once


def test_lone_article_is_kept():
    assert normalize("Le") == "le"


def test_none_is_empty():
    assert normalize(None) == ""


def test_only_leading_article_dropped():
    assert normalize("Type de Véhicule") == "type de vehicule"
