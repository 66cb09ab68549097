"""
Nutrient element table.

The solver addresses nutrients by index only. This module owns the index
order, the display names and the two derived views computed from a full
element vector: nutrient ratios and an EC estimate.
"""
from dataclasses import dataclass, asdict
from enum import IntEnum
from typing import Dict, List, Sequence


class Element(IntEnum):
    """Tracked nutrients, in solver index order."""
    N_NO3 = 0
    N_NH4 = 1
    P = 2
    K = 3
    Ca = 4
    Mg = 5
    S = 6
    Cl = 7
    Fe = 8
    Zn = 9
    B = 10
    Mn = 11
    Cu = 12
    Mo = 13


ELEMENTS_MAX = len(Element)

ELEMENT_NAMES = {
    Element.N_NO3: "N-NO3",
    Element.N_NH4: "N-NH4",
    Element.P: "P",
    Element.K: "K",
    Element.Ca: "Ca",
    Element.Mg: "Mg",
    Element.S: "S",
    Element.Cl: "Cl",
    Element.Fe: "Fe",
    Element.Zn: "Zn",
    Element.B: "B",
    Element.Mn: "Mn",
    Element.Cu: "Cu",
    Element.Mo: "Mo",
}

# Elements scaled together when raising or lowering the solution strength.
EC_SCALED_ELEMENTS = (
    Element.N_NO3,
    Element.K,
    Element.Ca,
    Element.Mg,
    Element.S,
    Element.Cl,
)

# Ion data used by the EC estimate: (molar mass of the element, charge).
ION_CHARGES = {
    Element.N_NO3: (14.007, 1),
    Element.N_NH4: (14.007, 1),
    Element.P: (30.974, 1),  # as H2PO4-
    Element.K: (39.098, 1),
    Element.Ca: (40.078, 2),
    Element.Mg: (24.305, 2),
    Element.S: (32.06, 2),  # as SO4--
    Element.Cl: (35.453, 1),
}
CATIONS = (Element.N_NH4, Element.K, Element.Ca, Element.Mg)
ANIONS = (Element.N_NO3, Element.P, Element.S, Element.Cl)


def to_name(index: int) -> str:
    """Display name for an element index."""
    return ELEMENT_NAMES[Element(index)]


def element_index(name: str) -> int:
    """
    Resolve an element by enum name ("N_NO3") or display name ("N-NO3").

    Raises:
        KeyError: if the name is not a tracked element
    """
    if name in Element.__members__:
        return int(Element[name])
    for element, display in ELEMENT_NAMES.items():
        if display == name:
            return int(element)
    raise KeyError(f"Unknown element: {name}")


def elements_from_mapping(values: Dict[str, float]) -> List[float]:
    """Expand a {name: value} mapping into a full element vector."""
    vector = [0.0] * ELEMENTS_MAX
    for name, value in values.items():
        vector[element_index(name)] = float(value or 0.0)
    return vector


def elements_to_mapping(vector: Sequence[float]) -> Dict[str, float]:
    return {to_name(i): vector[i] for i in range(ELEMENTS_MAX)}


@dataclass(frozen=True)
class SolutionRatio:
    """Nutrient ratios of a solution profile."""
    nh4_percent: float
    nk: float
    kca: float
    kmg: float
    camg: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def _safe_div(a: float, b: float) -> float:
    return a / b if b != 0 else 0.0


def calc_solution_ratio(elements: Sequence[float]) -> SolutionRatio:
    """
    Compute N-NH4 share of total N (in %), N:K, K:Ca, K:Mg and Ca:Mg.

    A ratio with a zero denominator is reported as 0.
    """
    n_no3 = elements[Element.N_NO3]
    n_nh4 = elements[Element.N_NH4]
    n_total = n_no3 + n_nh4
    k = elements[Element.K]
    ca = elements[Element.Ca]
    mg = elements[Element.Mg]
    return SolutionRatio(
        nh4_percent=100.0 * _safe_div(n_nh4, n_total),
        nk=_safe_div(n_total, k),
        kca=_safe_div(k, ca),
        kmg=_safe_div(k, mg),
        camg=_safe_div(ca, mg),
    )


def calc_solution_ec(elements: Sequence[float]) -> float:
    """
    Estimate EC (mS/cm) from macro ion concentrations in ppm.

    Uses the rule of thumb EC ≈ meq/L / 10, averaging the cation and anion
    sums so an unbalanced profile does not double count.
    """
    def meq(element: Element) -> float:
        molar_mass, charge = ION_CHARGES[element]
        return max(elements[element], 0.0) / molar_mass * charge

    cations = sum(meq(e) for e in CATIONS)
    anions = sum(meq(e) for e in ANIONS)
    return (cations + anions) / 2.0 / 10.0
