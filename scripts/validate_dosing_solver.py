#!/usr/bin/env python3
"""
Dosing Solver Validation Script
Runs randomized scenarios against the bundled catalog and checks the solver
invariants: nonnegative doses, ppm consistency, status/result agreement and
repeatability.
"""
import sys
import os
import random
import json
from typing import Dict, List

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from npk_calc.services.calculation_service import solve
from npk_calc.services.catalog_service import get_fertilizers, get_reference_solutions
from npk_calc.services.dosing_models import default_targets
from npk_calc.services.dosing_report import SolveStatus, achieved_elements
from npk_calc.services.nutrient_elements import ELEMENTS_MAX, to_name

VOLUMES = [1.0, 10.0, 100.0, 1000.0]
COST_FACTORS = [0.0, 0.0, 0.0001, 0.001]
PPM_TOLERANCE = 1e-6


def random_targets(rng: random.Random, solutions) -> List:
    base = rng.choice(solutions)
    targets = default_targets()
    for k in range(ELEMENTS_MAX):
        value = base.elements[k]
        if value and rng.random() < 0.8:
            targets[k].set_value(round(value * rng.uniform(0.7, 1.3), 3))
            targets[k].ratio = round(rng.uniform(0.3, 0.8), 2)
    return targets


def run_validation(num_tests: int = 200, seed: int = 42) -> Dict:
    rng = random.Random(seed)
    catalog = get_fertilizers()
    solutions = get_reference_solutions()

    stats = {
        "total_tests": num_tests,
        "statuses": {s.value: 0 for s in SolveStatus},
        "negative_doses": 0,
        "ppm_mismatch": 0,
        "not_repeatable": 0,
        "failed": 0,
    }
    anomalies = []
    deviations = []

    for i in range(num_tests):
        targets = random_targets(rng, solutions)
        fertilizers = rng.sample(catalog, rng.randint(1, len(catalog)))
        volume = rng.choice(VOLUMES)
        cost_factor = rng.choice(COST_FACTORS)

        try:
            report = solve(targets, fertilizers, volume, cost_factor)
        except Exception as e:
            stats["failed"] += 1
            anomalies.append({"test_id": i + 1, "issue": "Calculation error", "error": str(e)})
            continue

        stats["statuses"][report.status.value] += 1
        if not report.ok:
            if report.doses or report.amounts:
                anomalies.append({"test_id": i + 1, "issue": f"{report.status.value} carries results"})
            continue

        if any(d.x < 0 for d in report.doses):
            stats["negative_doses"] += 1
            anomalies.append({
                "test_id": i + 1,
                "issue": "Negative dose",
                "doses": {d.fertilizer.id: d.x for d in report.doses if d.x < 0},
            })

        expected = achieved_elements(report.doses)
        for k in range(ELEMENTS_MAX):
            if abs(expected[k] - report.achieved_ppm[k]) > PPM_TOLERANCE:
                stats["ppm_mismatch"] += 1
                anomalies.append({"test_id": i + 1, "issue": f"{to_name(k)} ppm mismatch"})
                break

        again = solve(targets, fertilizers, volume, cost_factor)
        if [d.x for d in again.doses] != [d.x for d in report.doses]:
            stats["not_repeatable"] += 1
            anomalies.append({"test_id": i + 1, "issue": "Second solve differs"})

        deviations.append(report.total_deviation_pct)

    stats["anomalies"] = len(anomalies)
    if deviations:
        stats["avg_abs_total_deviation"] = round(sum(abs(d) for d in deviations) / len(deviations), 2)

    return {"stats": stats, "anomalies": anomalies}


def generate_report(validation: Dict) -> str:
    stats = validation["stats"]
    anomalies = validation["anomalies"]

    report = []
    report.append("=" * 80)
    report.append("DOSING SOLVER VALIDATION REPORT")
    report.append("=" * 80)
    report.append("")

    report.append("## SUMMARY")
    report.append("-" * 40)
    report.append(f"Total tests: {stats['total_tests']}")
    for status_name, count in stats["statuses"].items():
        report.append(f"  {status_name:<18} {count:>5}")
    report.append(f"Failed with error: {stats['failed']}")
    report.append(f"Negative doses: {stats['negative_doses']}")
    report.append(f"ppm mismatches: {stats['ppm_mismatch']}")
    report.append(f"Not repeatable: {stats['not_repeatable']}")
    if "avg_abs_total_deviation" in stats:
        report.append(f"Average |total deviation|: {stats['avg_abs_total_deviation']:.2f}%")
    report.append("")

    if anomalies:
        report.append("## ANOMALIES")
        report.append("-" * 40)
        for i, anom in enumerate(anomalies[:15]):
            report.append(f"{i+1}. Test #{anom.get('test_id', '?')}: {anom.get('issue', 'Unknown')}")
            for k, v in anom.items():
                if k not in ["test_id", "issue"]:
                    report.append(f"   - {k}: {v}")
        if len(anomalies) > 15:
            report.append(f"   ... and {len(anomalies) - 15} more")
        report.append("")

    if stats["anomalies"] == 0 and stats["failed"] == 0:
        report.append("✓ All invariants hold.")
    else:
        report.append(f"⚠️ {stats['anomalies']} anomalies found.")

    report.append("=" * 80)
    return "\n".join(report)


if __name__ == "__main__":
    print("Running dosing solver validation (200 scenarios)...")
    print("")

    validation = run_validation(num_tests=200, seed=42)

    report = generate_report(validation)
    print(report)

    with open("dosing_solver_validation_data.json", "w", encoding="utf-8") as f:
        json.dump(validation, f, indent=2, ensure_ascii=False)

    print("\nGenerated: dosing_solver_validation_data.json")
    sys.exit(0 if validation["stats"]["anomalies"] == 0 else 1)
