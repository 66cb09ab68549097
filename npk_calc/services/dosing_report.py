"""
Dosing Report.

Turns a solved dose vector into what the operator reads: physical amounts
per bottle, achieved ppm, deviation from target, nutrient ratios, EC and
cost. Also holds the manual-mode forward evaluation and the text
rendering of a report.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from npk_calc.services.dosing_models import (
    Bottle,
    DosingResult,
    FertilizerAmount,
    FertilizerProfile,
    FertilizerType,
    TargetElement,
    empty_elements,
)
from npk_calc.services.dosing_rules import DEVIATION_ZERO_EPS, ZERO_TARGET_EPS
from npk_calc.services.nutrient_elements import (
    ELEMENTS_MAX,
    SolutionRatio,
    calc_solution_ec,
    calc_solution_ratio,
    to_name,
)


class SolveStatus(str, Enum):
    """Outcome of an automatic solve. Only OK carries results."""
    OK = "ok"
    NO_ELEMENTS = "no_elements"
    INFINITE_RESULTS = "infinite_results"
    NO_SOLUTION = "no_solution"
    MANUAL = "manual"


STATUS_MESSAGES = {
    SolveStatus.OK: "",
    SolveStatus.NO_ELEMENTS: "no elements...",
    SolveStatus.INFINITE_RESULTS: "infinite number of results...",
    SolveStatus.NO_SOLUTION: "no solution for this configuration...",
    SolveStatus.MANUAL: "manual mode",
}

BOTTLE_ORDER = (Bottle.A, Bottle.B, Bottle.C)


@dataclass
class CalculationReport:
    """Result of one calculation. Regenerated wholesale on every solve."""
    status: SolveStatus
    message: str = ""
    volume: float = 1.0
    targets: List[float] = field(default_factory=empty_elements)
    doses: List[DosingResult] = field(default_factory=list)
    amounts: List[FertilizerAmount] = field(default_factory=list)
    bottles: Dict[Bottle, List[FertilizerAmount]] = field(default_factory=dict)
    achieved_ppm: List[float] = field(default_factory=empty_elements)
    deviation_pct: List[Optional[float]] = field(default_factory=lambda: [None] * ELEMENTS_MAX)
    total_ppm: float = 0.0
    total_target_ppm: float = 0.0
    total_deviation_pct: float = 0.0
    ratio: Optional[SolutionRatio] = None
    ec: float = 0.0
    cost: float = 0.0
    text: str = ""

    @property
    def ok(self) -> bool:
        return self.status == SolveStatus.OK

    @classmethod
    def outcome(cls, status: SolveStatus, volume: float = 1.0) -> "CalculationReport":
        """An empty report carrying only a named outcome."""
        message = STATUS_MESSAGES[status]
        return cls(status=status, message=message, volume=volume, text=message)


# ==================== PHYSICAL AMOUNTS ====================

def physical_amount(fertilizer: FertilizerProfile, x: float, volume: float) -> FertilizerAmount:
    """
    Convert a dose in mg/L equivalent into grams or millilitres for the volume.

    DRY: (x / 1000) * V g
    LIQUID: x * V / density ml
    OTHER: (x / 1000) * V / density ml
    """
    if fertilizer.type == FertilizerType.DRY:
        return FertilizerAmount(fertilizer, x, (x / 1000.0) * volume, "g")
    if fertilizer.type == FertilizerType.LIQUID:
        return FertilizerAmount(fertilizer, x, x * volume / fertilizer.density, "ml")
    k = 1.0 / fertilizer.density
    return FertilizerAmount(fertilizer, x, (x / 1000.0) * volume * k, "ml")


def group_by_bottle(amounts: Sequence[FertilizerAmount]) -> Dict[Bottle, List[FertilizerAmount]]:
    """Group amounts by bottle in A, B, C order, omitting empty bottles."""
    groups = {bottle: [] for bottle in BOTTLE_ORDER}
    for amount in amounts:
        groups[amount.fertilizer.bottle].append(amount)
    return {bottle: items for bottle, items in groups.items() if items}


def total_cost(fertilizers: Sequence[FertilizerProfile], x: Sequence[float], volume: float) -> float:
    cost = 0.0
    for fert, xi in zip(fertilizers, x):
        cost += fert.cost * xi / 1000000.0
    return cost * volume


def achieved_elements(doses: Sequence[DosingResult]) -> List[float]:
    """ppm per nutrient: sum of content% * 0.01 * dose."""
    elements = empty_elements()
    for dose in doses:
        for k in range(ELEMENTS_MAX):
            elements[k] += dose.fertilizer.elements[k] * 0.01 * dose.x
    return elements


# ==================== EVALUATION ====================

def evaluate_dosage(
    targets: Sequence[TargetElement],
    fertilizers: Sequence[FertilizerProfile],
    x: Sequence[float],
    volume: float,
) -> CalculationReport:
    """Build the full report for a solved dose vector."""
    doses = [DosingResult(fert, xi) for fert, xi in zip(fertilizers, x)]
    target_values = [t.value for t in targets]
    achieved = achieved_elements(doses)

    deviation: List[Optional[float]] = [None] * ELEMENTS_MAX
    for k in range(ELEMENTS_MAX):
        target = target_values[k]
        if abs(target) > ZERO_TARGET_EPS:
            percent = 100.0 * (achieved[k] - target) / target
            if abs(percent) < DEVIATION_ZERO_EPS:
                percent = 0.0
            deviation[k] = percent

    total_target = sum(target_values)
    total_achieved = sum(achieved)
    total_deviation = 100.0 * (total_target - total_achieved) / total_target if total_target else 0.0

    report = CalculationReport(
        status=SolveStatus.OK,
        volume=volume,
        targets=target_values,
        doses=doses,
        achieved_ppm=achieved,
        deviation_pct=deviation,
        total_ppm=total_achieved,
        total_target_ppm=total_target,
        total_deviation_pct=total_deviation,
        ratio=calc_solution_ratio(achieved),
        ec=calc_solution_ec(achieved),
    )
    return apply_volume(report, volume)


def apply_volume(report: CalculationReport, volume: float) -> CalculationReport:
    """
    Recompute the volume-dependent parts (amounts, bottles, cost, text) of
    a report in place, keeping the solved doses.
    """
    fertilizers = [d.fertilizer for d in report.doses]
    x = [d.x for d in report.doses]
    report.volume = volume
    report.amounts = [physical_amount(fert, xi, volume) for fert, xi in zip(fertilizers, x)]
    report.bottles = group_by_bottle(report.amounts)
    report.cost = total_cost(fertilizers, x, volume)
    report.text = format_report(report)
    return report


def evaluate_manual(doses: Sequence[DosingResult]) -> List[TargetElement]:
    """
    Achieved ppm for operator-given doses, as a fresh target profile.

    No solve, no feasibility check, no cost or ratio.
    """
    return [TargetElement(value=ppm) for ppm in achieved_elements(doses)]


# ==================== TEXT ====================

def format_report(report: CalculationReport) -> str:
    """Render a report as the fixed-width text block shown to the operator."""
    if not report.ok:
        return report.message

    r = ""
    for bottle, amounts in report.bottles.items():
        r += f"Bottle {bottle.value}:\n"
        for amount in amounts:
            r += amount.label.ljust(12) + " - " + amount.fertilizer.name + "\n"

    r2 = "\nSolution:\n"
    for k in range(ELEMENTS_MAX):
        ppm = report.achieved_ppm[k]
        if abs(ppm) <= ZERO_TARGET_EPS:
            continue
        s = to_name(k).ljust(7) + " : " + f"{ppm:.2f}".ljust(7)
        percent = report.deviation_pct[k]
        if percent is not None:
            sign = " : +" if percent >= 0 else " : "
            s += (sign + f"{percent:.2f}").ljust(10) + "%\n"
        else:
            s += "\n"
        r2 += s

    ppm_line = (
        "PPM     : " + f"{report.total_ppm:.2f}".ljust(7)
        + " : " + f"{report.total_deviation_pct:.2f}".ljust(7) + "%\n\n"
    )
    ratio = report.ratio
    if ratio is not None:
        ppm_line += f"N-NH4 % : {ratio.nh4_percent:.2f}\n"
        ppm_line += f"N:K     : {ratio.nk:.2f}\n"
        ppm_line += f"K:Ca    : {ratio.kca:.2f}\n"
        ppm_line += f"K:Mg    : {ratio.kmg:.2f}\n"
        ppm_line += f"Ca:Mg   : {ratio.camg:.2f}\n\n"

    cost_line = f"Cost    : {report.cost:.2f}\n"
    return r + r2 + "\n" + ppm_line + cost_line
