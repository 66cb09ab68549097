"""
Tests for the fertilizer catalog: bundled data, lookups and the
NPK_CALC_CATALOG_PATH override.
"""
import json

import pytest

from npk_calc.services import catalog_service
from npk_calc.services.catalog_service import (
    CatalogError,
    UnknownFertilizerError,
    UnknownSolutionError,
    clear_catalog_cache,
    get_fertilizer,
    get_fertilizers,
    get_reference_solution,
    get_reference_solutions,
)
from npk_calc.services.dosing_models import Bottle, FertilizerType
from npk_calc.services.nutrient_elements import ELEMENTS_MAX, Element


@pytest.fixture(autouse=True)
def fresh_catalog(monkeypatch):
    monkeypatch.delenv("NPK_CALC_CATALOG_PATH", raising=False)
    clear_catalog_cache()
    yield
    clear_catalog_cache()


@pytest.fixture
def custom_catalog(tmp_path, monkeypatch):
    data = {
        "fertilizers": [
            {"id": "urea_like", "name": "Zeta nitrogen", "cost": 0.5, "elements": {"N_NO3": 46}},
            {"id": "acid", "name": "Alpha acid", "type": "liquid", "bottle": "C", "density": 1.6,
             "elements": {"P": 23.7}},
        ],
        "solutions": [
            {"id": "basic", "name": "Basic", "elements": {"N-NO3": 100, "K": 150}},
        ],
    }
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    monkeypatch.setenv("NPK_CALC_CATALOG_PATH", str(path))
    return path


def test_bundled_catalog_loads():
    fertilizers = get_fertilizers()
    assert len(fertilizers) == 15
    assert all(len(f.elements) == ELEMENTS_MAX for f in fertilizers)


def test_fertilizers_sorted_by_name():
    names = [f.name.casefold() for f in get_fertilizers()]
    assert names == sorted(names)


def test_get_fertilizer():
    fert = get_fertilizer("calcium_nitrate")
    assert fert.elements[Element.Ca] == 19.0
    assert fert.elements[Element.N_NO3] == 14.4
    assert fert.bottle == Bottle.A
    assert fert.type == FertilizerType.DRY


def test_phosphoric_acid_is_measured_by_volume():
    acid = get_fertilizer("phosphoric_acid_75")
    assert acid.type == FertilizerType.OTHER
    assert acid.density == pytest.approx(1.58)


def test_unknown_fertilizer():
    with pytest.raises(UnknownFertilizerError):
        get_fertilizer("unobtainium")


def test_unknown_fertilizer_is_key_error():
    with pytest.raises(KeyError):
        get_fertilizer("unobtainium")


def test_reference_solutions():
    ids = [s.id for s in get_reference_solutions()]
    assert ids == ["hoagland", "lettuce_nft", "tomato_fruiting"]
    hoagland = get_reference_solution("hoagland")
    assert hoagland.elements[Element.K] == 235
    assert hoagland.elements[Element.Cl] == 0.0


def test_unknown_reference_solution():
    with pytest.raises(UnknownSolutionError):
        get_reference_solution("missing")


def test_catalog_is_cached():
    first = catalog_service.load_catalog()
    assert catalog_service.load_catalog() is first


def test_env_override(custom_catalog):
    fertilizers = get_fertilizers()
    assert [f.id for f in fertilizers] == ["acid", "urea_like"]

    acid = get_fertilizer("acid")
    assert acid.type == FertilizerType.LIQUID
    assert acid.bottle == Bottle.C

    basic = get_reference_solution("basic")
    assert basic.elements[Element.N_NO3] == 100


def test_cache_clear_picks_up_new_path(custom_catalog, monkeypatch):
    assert len(get_fertilizers()) == 2

    monkeypatch.delenv("NPK_CALC_CATALOG_PATH")
    assert len(get_fertilizers()) == 2  # still cached

    clear_catalog_cache()
    assert len(get_fertilizers()) == 15


def test_missing_file(tmp_path, monkeypatch):
    monkeypatch.setenv("NPK_CALC_CATALOG_PATH", str(tmp_path / "nope.json"))
    with pytest.raises(CatalogError):
        get_fertilizers()


def test_broken_json(tmp_path, monkeypatch):
    path = tmp_path / "catalog.json"
    path.write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("NPK_CALC_CATALOG_PATH", str(path))
    with pytest.raises(CatalogError):
        get_fertilizers()


def test_unknown_element_in_catalog(tmp_path, monkeypatch):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"fertilizers": [{"id": "x", "elements": {"Xx": 1}}]}), encoding="utf-8")
    monkeypatch.setenv("NPK_CALC_CATALOG_PATH", str(path))
    with pytest.raises(CatalogError):
        get_fertilizers()


def test_zero_density_in_catalog(tmp_path, monkeypatch):
    path = tmp_path / "catalog.json"
    data = {"fertilizers": [{"id": "acid", "type": "liquid", "density": 0, "elements": {"P": 23.7}}]}
    path.write_text(json.dumps(data), encoding="utf-8")
    monkeypatch.setenv("NPK_CALC_CATALOG_PATH", str(path))
    with pytest.raises(CatalogError):
        get_fertilizers()
