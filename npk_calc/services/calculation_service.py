"""
Calculation Service.

Entry points used by the HTTP layer and scripts:

- solve(): automatic mode. Weighting, normal equations, solvability
  classification, nonnegative solve and report.
- evaluate_manual(): manual mode. Achieved ppm for operator-given doses.

Calculation keeps the editable state of one calculation (targets,
selected fertilizers, volume, mode) and recomputes its report on every
edit, the same way the operator screen drives it.
"""
import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from npk_calc.services.dosing_models import (
    DosingResult,
    FertilizerProfile,
    ReferenceSolution,
    TargetElement,
    default_targets,
)
from npk_calc.services.dosing_report import (
    CalculationReport,
    SolveStatus,
    apply_volume,
    evaluate_dosage,
    evaluate_manual,
)
from npk_calc.services.dosing_rules import (
    DEFAULT_CALCULATION_NAME,
    DEFAULT_COST_FACTOR,
    DEFAULT_VOLUME_L,
)
from npk_calc.services.dosing_solver import (
    CholeskyDecompositionError,
    Solvability,
    build_normal_equations,
    classify_system,
    count_active_elements,
    solve_nonnegative,
    weigh_elements,
)
from npk_calc.services.nutrient_elements import (
    EC_SCALED_ELEMENTS,
    ELEMENTS_MAX,
    SolutionRatio,
    calc_solution_ec,
    calc_solution_ratio,
)

logger = logging.getLogger(__name__)

__all__ = ["solve", "evaluate_manual", "Calculation"]


def solve(
    targets: Sequence[TargetElement],
    fertilizers: Sequence[FertilizerProfile],
    volume: float = DEFAULT_VOLUME_L,
    cost_factor: float = DEFAULT_COST_FACTOR,
) -> CalculationReport:
    """
    Compute nonnegative doses that best match the target profile.

    Args:
        targets: ELEMENTS_MAX target elements, in element index order
        fertilizers: Selected fertilizers
        volume: Water volume in litres
        cost_factor: Cost penalty, 0 disables it

    Returns:
        A report with status OK, or an empty report whose status names the
        outcome (NO_ELEMENTS, INFINITE_RESULTS, NO_SOLUTION)
    """
    if len(targets) != ELEMENTS_MAX:
        raise ValueError(f"Expected {ELEMENTS_MAX} target elements, got {len(targets)}")

    weighted = weigh_elements(targets)
    if count_active_elements(weighted) == 0:
        logger.info("No target elements above threshold, nothing to solve")
        return CalculationReport.outcome(SolveStatus.NO_ELEMENTS, volume)

    a, b = build_normal_equations(fertilizers, weighted, cost_factor)

    solvability = classify_system(a, b)
    if solvability == Solvability.INCONSISTENT:
        logger.info(f"No solution for {len(fertilizers)} fertilizers")
        return CalculationReport.outcome(SolveStatus.NO_SOLUTION, volume)
    if solvability == Solvability.UNDERDETERMINED:
        logger.info(f"Infinite number of results for {len(fertilizers)} fertilizers")
        return CalculationReport.outcome(SolveStatus.INFINITE_RESULTS, volume)

    try:
        x = solve_nonnegative(a, b)
    except CholeskyDecompositionError as e:
        # Negative targets give negative weights, A is then indefinite
        logger.warning(f"No solution for {len(fertilizers)} fertilizers: {e}")
        return CalculationReport.outcome(SolveStatus.NO_SOLUTION, volume)
    report = evaluate_dosage(targets, fertilizers, x, volume)
    logger.info(
        f"Solved {len(fertilizers)} fertilizers: total {report.total_ppm:.2f} ppm, "
        f"deviation {report.total_deviation_pct:.2f}%, cost {report.cost:.2f}"
    )
    return report


class Calculation:
    """
    Editable calculation record.

    mode False is automatic (solve on every edit), True is manual (the
    operator edits doses and targets follow).
    """

    def __init__(
        self,
        name: str = DEFAULT_CALCULATION_NAME,
        volume: float = DEFAULT_VOLUME_L,
        cost_k: float = DEFAULT_COST_FACTOR,
    ):
        self.name = name
        self.elements: List[TargetElement] = default_targets()
        self.fertilizers: List[FertilizerProfile] = []
        self.volume = volume
        self.cost_k = cost_k
        self._mode = False
        self.result_ferts: List[DosingResult] = []
        self.report: Optional[CalculationReport] = None
        self.result = ""

    @classmethod
    def from_data(
        cls,
        name: str,
        elements: Iterable[Tuple[float, float]],
        fertilizers: Iterable[FertilizerProfile],
        volume: float = DEFAULT_VOLUME_L,
        mode: bool = False,
        cost_k: float = DEFAULT_COST_FACTOR,
    ) -> "Calculation":
        """Restore a calculation from stored (value, ratio) pairs and fertilizers."""
        calc = cls(name=name, volume=volume, cost_k=cost_k)
        for ix, (value, ratio) in enumerate(elements):
            calc.elements[ix] = TargetElement(value=value, ratio=ratio)
        calc.fertilizers = list(fertilizers)
        calc._mode = mode
        if mode:
            calc.result_ferts = [DosingResult(f, 0.0) for f in calc.fertilizers]
        calc.calc()
        return calc

    # ==================== MODE ====================

    @property
    def mode(self) -> bool:
        return self._mode

    @mode.setter
    def mode(self, value: bool) -> None:
        self._mode = value
        if value:
            # Keep doses from the last solve so the operator starts from them.
            previous = {r.fertilizer.id: r.x for r in self.result_ferts}
            self.result_ferts = [
                DosingResult(f, previous.get(f.id, 0.0)) for f in self.fertilizers
            ]
        else:
            self.calc()

    # ==================== FERTILIZERS ====================

    def add_fertilizer(self, fertilizer: FertilizerProfile) -> None:
        """Insert keeping the list sorted by name, then recompute."""
        key = fertilizer.name.casefold()
        ix = len(self.fertilizers)
        for i, f in enumerate(self.fertilizers):
            if key <= f.name.casefold():
                ix = i
                break
        self.fertilizers.insert(ix, fertilizer)
        if self._mode:
            self.result_ferts.insert(ix, DosingResult(fertilizer, 0.0))
        self.calc()

    def remove_fertilizer(self, fertilizer: FertilizerProfile) -> None:
        self.fertilizers = [f for f in self.fertilizers if f.id != fertilizer.id]
        if self._mode:
            self.result_ferts = [r for r in self.result_ferts if r.fertilizer.id != fertilizer.id]
        self.calc()

    def has_fertilizer(self, fertilizer: FertilizerProfile) -> bool:
        return any(f.id == fertilizer.id for f in self.fertilizers)

    def set_dose(self, fertilizer_id: str, x: float) -> None:
        """Manual mode: set the dose of one fertilizer and recompute targets."""
        if not self._mode:
            raise RuntimeError("Doses can only be edited in manual mode")
        for r in self.result_ferts:
            if r.fertilizer.id == fertilizer_id:
                r.x = x
                break
        else:
            raise KeyError(f"Fertilizer {fertilizer_id} is not part of this calculation")
        self.calc()

    # ==================== TARGETS ====================

    def set_solution(self, based_on: ReferenceSolution) -> None:
        """Take name and target values from a reference solution."""
        self.name = based_on.name
        for i in range(ELEMENTS_MAX):
            self.elements[i].set_value(based_on.elements[i])
        self.calc()

    def set_element(self, index: int, value: float, ratio: Optional[float] = None) -> None:
        self.elements[index].set_value(value)
        if ratio is not None:
            self.elements[index].ratio = ratio
        self.calc()

    def set_base_values(self) -> None:
        for e in self.elements:
            e.set_base_value()

    def increase_ec(self, percent: float) -> None:
        """
        Scale the macro targets that drive EC (N-NO3, K, Ca, Mg, S, Cl)
        relative to their base values. percent is a factor: 1.1 = +10%.
        """
        for element in EC_SCALED_ELEMENTS:
            self.elements[element].from_percent(percent)
        self.calc()

    def set_volume(self, volume: float) -> None:
        self.volume = volume
        self.calc(volume_changed=True)

    @property
    def ec(self) -> float:
        return calc_solution_ec([e.value for e in self.elements])

    @property
    def ratio(self) -> SolutionRatio:
        return calc_solution_ratio([e.value for e in self.elements])

    # ==================== CALCULATION ====================

    def calc(self, volume_changed: bool = False) -> None:
        if self._mode:
            self._calc_manual()
        else:
            self._calc_automatic(volume_changed)

    def _calc_automatic(self, volume_changed: bool) -> None:
        if volume_changed and self.report is not None and self.report.ok:
            self.report = apply_volume(self.report, self.volume)
        else:
            self.report = solve(self.elements, self.fertilizers, self.volume, self.cost_k)
            self.result_ferts = list(self.report.doses)
        self.result = self.report.text

    def _calc_manual(self) -> None:
        self.report = CalculationReport.outcome(SolveStatus.MANUAL, self.volume)
        self.result = self.report.text
        achieved = evaluate_manual(self.result_ferts)
        for i in range(ELEMENTS_MAX):
            self.elements[i].set_value(achieved[i].value)

    def to_data(self) -> dict:
        """Stored form: (value, ratio) pairs and fertilizer ids."""
        return {
            "name": self.name,
            "elements": [(e.value, e.ratio) for e in self.elements],
            "fertilizer_ids": [f.id for f in self.fertilizers],
            "volume": self.volume,
            "mode": self._mode,
        }
