"""
End-to-end scenarios for the calculation service.

Each scenario runs the full pipeline:
  weighting -> normal equations -> classification -> active set -> report
"""
import copy

import pytest

from npk_calc.services.calculation_service import Calculation, evaluate_manual, solve
from npk_calc.services.dosing_models import (
    Bottle,
    DosingResult,
    FertilizerProfile,
    ReferenceSolution,
    default_targets,
)
from npk_calc.services.dosing_report import SolveStatus
from npk_calc.services.nutrient_elements import ELEMENTS_MAX, Element, elements_from_mapping


def fertilizer(fert_id, name=None, bottle=Bottle.A, cost=0.0, **content):
    elements = [0.0] * ELEMENTS_MAX
    for element, pct in content.items():
        elements[Element[element]] = pct
    return FertilizerProfile(id=fert_id, name=name or fert_id, elements=tuple(elements), cost=cost, bottle=bottle)


def targets(**values):
    result = default_targets()
    for name, value in values.items():
        result[Element[name]].set_value(value)
    return result


HYDRO_SET = [
    fertilizer("calcium_nitrate", "Calcium nitrate", Bottle.A, 1.1, N_NO3=14.4, N_NH4=1.1, Ca=19.0),
    fertilizer("potassium_nitrate", "Potassium nitrate", Bottle.B, 1.6, N_NO3=13.8, K=38.7),
    fertilizer("mkp", "Monopotassium phosphate", Bottle.B, 2.2, P=22.8, K=28.7),
    fertilizer("magnesium_sulfate", "Magnesium sulfate", Bottle.B, 0.6, Mg=9.9, S=13.0),
    fertilizer("potassium_sulfate", "Potassium sulfate", Bottle.B, 1.3, K=44.9, S=18.4),
    fertilizer("ammonium_nitrate", "Ammonium nitrate", Bottle.A, 0.8, N_NO3=17.0, N_NH4=17.0),
]

HOAGLAND = ReferenceSolution(
    id="hoagland",
    name="Hoagland",
    elements=tuple(elements_from_mapping({
        "N_NO3": 196, "N_NH4": 14, "P": 31, "K": 235, "Ca": 160, "Mg": 48, "S": 64,
    })),
)


def hoagland_targets():
    result = default_targets()
    for i, value in enumerate(HOAGLAND.elements):
        result[i].set_value(value)
    return result


class TestSolveScenarios:

    def test_single_fertilizer_exact_fit(self):
        """N 10%, target 100 ppm, 1 L -> 1000 mg/L, 100 ppm, 0% deviation."""
        report = solve(targets(N_NO3=100), [fertilizer("n10", N_NO3=10)], volume=1.0, cost_factor=0.0)

        assert report.status == SolveStatus.OK
        assert report.doses[0].x == pytest.approx(1000.0)
        assert report.achieved_ppm[Element.N_NO3] == pytest.approx(100.0)
        assert report.deviation_pct[Element.N_NO3] == pytest.approx(0.0, abs=1e-6)
        assert report.amounts[0].amount == pytest.approx(1.0)
        assert report.amounts[0].unit == "g"

    def test_negative_dose_is_fixed_to_zero(self):
        """Unconstrained fit needs -1000 of pure N; active set drops it."""
        ferts = [fertilizer("nk", N_NO3=10, K=10), fertilizer("n", N_NO3=10)]
        report = solve(targets(N_NO3=100, K=200), ferts)

        assert report.ok
        assert report.doses[1].x == 0.0
        assert report.doses[0].x == pytest.approx(4000.0 / 3.0)
        assert report.achieved_ppm[Element.K] == pytest.approx(400.0 / 3.0)

    def test_no_elements(self):
        report = solve(default_targets(), [fertilizer("n10", N_NO3=10)])

        assert report.status == SolveStatus.NO_ELEMENTS
        assert report.message == "no elements..."
        assert report.doses == []
        assert report.amounts == []

    def test_targets_below_threshold_count_as_no_elements(self):
        report = solve(targets(N_NO3=0.0005, K=-0.0005), [fertilizer("n10", N_NO3=10)])
        assert report.status == SolveStatus.NO_ELEMENTS

    def test_dependent_fertilizers_no_solution(self):
        ferts = [fertilizer("n10", cost=1.0, N_NO3=10), fertilizer("n20", cost=5.0, N_NO3=20)]
        report = solve(targets(N_NO3=100), ferts, cost_factor=0.01)

        assert report.status == SolveStatus.NO_SOLUTION
        assert report.message == "no solution for this configuration..."
        assert report.doses == []

    def test_dependent_fertilizers_infinite_results(self):
        ferts = [fertilizer("n10", N_NO3=10), fertilizer("n20", N_NO3=20)]
        report = solve(targets(N_NO3=100), ferts)

        assert report.status == SolveStatus.INFINITE_RESULTS
        assert report.text == "infinite number of results..."

    def test_negative_target_without_positive_definite_system(self):
        report = solve(targets(Cl=-5), [fertilizer("cl", Cl=40)])

        assert report.status == SolveStatus.NO_SOLUTION
        assert report.doses == []
        assert report.text == "no solution for this configuration..."

    def test_fertilizer_without_targeted_content_is_underdetermined(self):
        ferts = [fertilizer("n10", N_NO3=10), fertilizer("iron", Fe=11)]
        report = solve(targets(N_NO3=100), ferts)
        assert report.status == SolveStatus.INFINITE_RESULTS

    def test_hoagland_with_common_salts(self):
        report = solve(hoagland_targets(), HYDRO_SET, volume=100.0)

        assert report.ok
        assert len(report.doses) == len(HYDRO_SET)
        assert all(d.x >= 0 for d in report.doses)
        assert list(report.bottles) == [Bottle.A, Bottle.B]
        assert report.cost > 0
        # Calcium has a single source
        assert report.achieved_ppm[Element.Ca] == pytest.approx(160.0, rel=0.25)

    def test_cost_factor_lowers_expensive_dose(self):
        ferts = [
            fertilizer("cheap_n", cost=0.5, N_NO3=10, K=1),
            fertilizer("pricey_n", cost=50.0, N_NO3=10, K=2),
        ]
        free = solve(targets(N_NO3=100, K=15), ferts, cost_factor=0.0)
        penalized = solve(targets(N_NO3=100, K=15), ferts, cost_factor=0.0001)

        assert free.ok and penalized.ok
        assert penalized.doses[1].x < free.doses[1].x

    def test_solve_is_idempotent(self):
        t = hoagland_targets()
        first = solve(t, HYDRO_SET, 10.0, 0.0)
        second = solve(t, HYDRO_SET, 10.0, 0.0)

        assert [d.x for d in first.doses] == [d.x for d in second.doses]
        assert first.achieved_ppm == second.achieved_ppm
        assert first.text == second.text

    def test_inputs_are_not_mutated(self):
        t = hoagland_targets()
        before = copy.deepcopy(t)
        solve(t, HYDRO_SET)
        assert t == before

    def test_wrong_target_count(self):
        with pytest.raises(ValueError):
            solve(default_targets()[:3], HYDRO_SET)

    def test_manual_entry_point(self):
        achieved = evaluate_manual([DosingResult(HYDRO_SET[0], 1000.0)])
        assert achieved[Element.Ca].value == pytest.approx(190.0)


class TestCalculation:

    def test_new_calculation_defaults(self):
        calc = Calculation()
        assert calc.name == "New Calculation"
        assert calc.volume == 1.0
        assert calc.mode is False
        assert len(calc.elements) == ELEMENTS_MAX
        assert all(e.ratio == 0.5 for e in calc.elements)

    def test_add_fertilizer_keeps_name_order(self):
        calc = Calculation()
        calc.add_fertilizer(HYDRO_SET[1])  # Potassium nitrate
        calc.add_fertilizer(HYDRO_SET[0])  # Calcium nitrate
        calc.add_fertilizer(HYDRO_SET[3])  # Magnesium sulfate
        assert [f.name for f in calc.fertilizers] == ["Calcium nitrate", "Magnesium sulfate", "Potassium nitrate"]
        assert calc.has_fertilizer(HYDRO_SET[3])
        assert not calc.has_fertilizer(HYDRO_SET[4])

    def test_remove_fertilizer(self):
        calc = Calculation()
        calc.add_fertilizer(HYDRO_SET[0])
        calc.add_fertilizer(HYDRO_SET[1])
        calc.remove_fertilizer(HYDRO_SET[0])
        assert [f.id for f in calc.fertilizers] == ["potassium_nitrate"]

    def test_edits_recompute(self):
        calc = Calculation()
        calc.add_fertilizer(fertilizer("n10", "N ten", N_NO3=10))
        assert calc.result == "no elements..."

        calc.set_element(Element.N_NO3, 100.0)
        assert calc.report.ok
        assert calc.result_ferts[0].x == pytest.approx(1000.0)
        assert "Bottle A:" in calc.result

    def test_set_solution(self):
        calc = Calculation()
        for f in HYDRO_SET:
            calc.add_fertilizer(f)
        calc.set_solution(HOAGLAND)

        assert calc.name == "Hoagland"
        assert calc.elements[Element.K].value == 235
        assert calc.elements[Element.K].value_base == 235
        assert calc.report.ok

    def test_volume_change_keeps_solution(self):
        calc = Calculation.from_data("N", [(100.0, 0.5)], [fertilizer("n10", N_NO3=10)])
        x_before = calc.result_ferts[0].x

        calc.set_volume(5.0)

        assert calc.result_ferts[0].x == x_before
        assert calc.report.amounts[0].amount == pytest.approx(5.0)
        assert "5.00 g" in calc.result

    def test_increase_ec_scales_macro_subset(self):
        calc = Calculation()
        calc.set_solution(HOAGLAND)
        ec_before = calc.ec

        calc.increase_ec(1.1)

        assert calc.elements[Element.N_NO3].value == pytest.approx(196 * 1.1)
        assert calc.elements[Element.K].value == pytest.approx(235 * 1.1)
        assert calc.elements[Element.S].value == pytest.approx(64 * 1.1)
        # Not part of the scaled subset
        assert calc.elements[Element.N_NH4].value == 14
        assert calc.elements[Element.P].value == 31
        assert calc.ec > ec_before

        calc.increase_ec(1.0)
        assert calc.elements[Element.K].value == pytest.approx(235)

    def test_set_base_values(self):
        calc = Calculation()
        calc.set_solution(HOAGLAND)
        calc.increase_ec(2.0)
        calc.set_base_values()
        calc.increase_ec(0.5)
        assert calc.elements[Element.K].value == pytest.approx(235)

    def test_ratio_of_targets(self):
        calc = Calculation()
        calc.set_solution(HOAGLAND)
        assert calc.ratio.nh4_percent == pytest.approx(100 * 14 / 210)
        assert calc.ratio.camg == pytest.approx(160 / 48)

    def test_negative_target_edit_reports_no_solution(self):
        calc = Calculation()
        calc.add_fertilizer(fertilizer("cl", "Chloride", Cl=40))
        calc.set_element(Element.Cl, -5.0)

        assert calc.report.status == SolveStatus.NO_SOLUTION
        assert calc.result == "no solution for this configuration..."
        assert calc.result_ferts == []

    def test_manual_mode_keeps_solved_doses(self):
        calc = Calculation.from_data("N", [(100.0, 0.5)], [fertilizer("n10", N_NO3=10)])
        calc.mode = True

        assert calc.result_ferts[0].x == pytest.approx(1000.0)
        calc.calc()
        assert calc.result == "manual mode"
        assert calc.elements[Element.N_NO3].value == pytest.approx(100.0)

    def test_manual_dose_edit_updates_targets(self):
        calc = Calculation()
        calc.add_fertilizer(HYDRO_SET[0])
        calc.mode = True
        calc.set_dose("calcium_nitrate", 500.0)

        assert calc.elements[Element.Ca].value == pytest.approx(95.0)
        assert calc.elements[Element.N_NH4].value == pytest.approx(5.5)

    def test_manual_mode_add_fertilizer_starts_at_zero(self):
        calc = Calculation()
        calc.add_fertilizer(HYDRO_SET[1])
        calc.mode = True
        calc.add_fertilizer(HYDRO_SET[0])
        assert [(r.fertilizer.id, r.x) for r in calc.result_ferts] == [
            ("calcium_nitrate", 0.0), ("potassium_nitrate", 0.0),
        ]

    def test_set_dose_requires_manual_mode(self):
        calc = Calculation()
        calc.add_fertilizer(HYDRO_SET[0])
        with pytest.raises(RuntimeError):
            calc.set_dose("calcium_nitrate", 1.0)

    def test_set_dose_unknown_fertilizer(self):
        calc = Calculation()
        calc.mode = True
        with pytest.raises(KeyError):
            calc.set_dose("missing", 1.0)

    def test_back_to_automatic_resolves(self):
        calc = Calculation.from_data("N", [(100.0, 0.5)], [fertilizer("n10", N_NO3=10)])
        calc.mode = True
        calc.set_dose("n10", 2000.0)
        assert calc.elements[Element.N_NO3].value == pytest.approx(200.0)

        calc.mode = False
        assert calc.report.ok
        assert calc.result_ferts[0].x == pytest.approx(2000.0)

    def test_to_data_round_trip_shape(self):
        calc = Calculation.from_data("Stored", [(100.0, 0.3)], [HYDRO_SET[0]], volume=20.0)
        data = calc.to_data()
        assert data["name"] == "Stored"
        assert data["elements"][0] == (100.0, 0.3)
        assert data["fertilizer_ids"] == ["calcium_nitrate"]
        assert data["volume"] == 20.0
        assert data["mode"] is False
