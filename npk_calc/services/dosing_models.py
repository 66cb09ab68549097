"""
Data model shared by the dosing solver, the report and the calculation
service.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from npk_calc.services.dosing_rules import DEFAULT_RATIO
from npk_calc.services.nutrient_elements import ELEMENTS_MAX, elements_from_mapping


class FertilizerType(str, Enum):
    """How a fertilizer is delivered, which decides the physical unit."""
    DRY = "dry"
    LIQUID = "liquid"
    OTHER = "other"


class Bottle(str, Enum):
    """Stock bottle a fertilizer is dissolved in."""
    A = "A"
    B = "B"
    C = "C"


@dataclass
class TargetElement:
    """
    Operator target for one nutrient.

    value: target concentration in ppm
    ratio: importance position in [0, 1]
    value_base: value before percentage scaling
    """
    value: float = 0.0
    ratio: float = DEFAULT_RATIO
    value_base: Optional[float] = None

    def __post_init__(self):
        if self.value_base is None:
            self.value_base = self.value

    def set_value(self, x: float) -> None:
        self.value = self.value_base = x

    def set_base_value(self) -> None:
        self.value_base = self.value

    def from_percent(self, x: float) -> None:
        """Scale the base value by a factor (1.1 = +10%)."""
        self.value = self.value_base * x


@dataclass(frozen=True)
class FertilizerProfile:
    """
    A fertilizer product.

    elements holds the mass percent of every tracked nutrient, in element
    index order. cost is per unit mass (per kg).
    """
    id: str
    name: str
    elements: Tuple[float, ...]
    density: float = 1.0
    cost: float = 0.0
    type: FertilizerType = FertilizerType.DRY
    bottle: Bottle = Bottle.A

    def __post_init__(self):
        if len(self.elements) != ELEMENTS_MAX:
            raise ValueError(
                f"Fertilizer {self.id} has {len(self.elements)} element values, expected {ELEMENTS_MAX}"
            )
        if self.density <= 0:
            raise ValueError(f"Fertilizer {self.id} has non-positive density {self.density}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FertilizerProfile":
        """Build a profile from catalog-style data with elements keyed by name."""
        elements = data.get("elements", {})
        if isinstance(elements, dict):
            elements = elements_from_mapping(elements)
        return cls(
            id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            elements=tuple(float(v) for v in elements),
            density=float(data.get("density", 1.0)),
            cost=float(data.get("cost", 0.0) or 0.0),
            type=FertilizerType(data.get("type", FertilizerType.DRY.value)),
            bottle=Bottle(data.get("bottle", Bottle.A.value)),
        )


@dataclass(frozen=True)
class ReferenceSolution:
    """A stored nutrient solution used to prefill targets."""
    id: str
    name: str
    elements: Tuple[float, ...]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReferenceSolution":
        return cls(
            id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            elements=tuple(elements_from_mapping(data.get("elements", {}))),
        )


@dataclass(frozen=True)
class WeightedElement:
    """Per-solve view of a target: weight k and exclusion flag."""
    value: float
    value_minus_water: float = 0.0
    k: float = 0.0
    zero: bool = True


@dataclass
class DosingResult:
    """Solved or operator-given dose x (mg/L equivalent) of a fertilizer."""
    fertilizer: FertilizerProfile
    x: float = 0.0


@dataclass
class FertilizerAmount:
    """Physical amount of a fertilizer for the calculation volume."""
    fertilizer: FertilizerProfile
    x: float
    amount: float
    unit: str

    @property
    def label(self) -> str:
        return f"{self.amount:.2f} {self.unit}"


def default_targets() -> List[TargetElement]:
    return [TargetElement() for _ in range(ELEMENTS_MAX)]


def empty_elements() -> List[float]:
    return [0.0] * ELEMENTS_MAX

