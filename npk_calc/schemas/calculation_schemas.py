"""
Pydantic schemas for the nutrient solution calculation API.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict

from npk_calc.services.dosing_models import Bottle, FertilizerProfile, FertilizerType
from npk_calc.services.dosing_report import SolveStatus
from npk_calc.services.dosing_rules import (
    DEFAULT_CALCULATION_NAME,
    DEFAULT_COST_FACTOR,
    DEFAULT_RATIO,
    DEFAULT_VOLUME_L,
)
from npk_calc.services.nutrient_elements import element_index, elements_from_mapping


def _check_element_names(values: Dict) -> Dict:
    for name in values:
        try:
            element_index(name)
        except KeyError:
            raise ValueError(f"Unknown element: {name}") from None
    return values


# ==================== INPUT SCHEMAS ====================

class TargetElementIn(BaseModel):
    """Target for one nutrient."""
    value: float = Field(default=0.0, description="Target concentration in ppm")
    ratio: float = Field(default=DEFAULT_RATIO, ge=0, le=1, description="Importance position 0..1")


class FertilizerIn(BaseModel):
    """Inline fertilizer definition, used instead of or next to catalog ids."""
    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    elements: Dict[str, float] = Field(default_factory=dict, description="Mass percent per element name")
    density: float = Field(default=1.0, gt=0, description="Density, used for liquid and other types")
    cost: float = Field(default=0.0, ge=0, description="Cost per kg")
    type: FertilizerType = Field(default=FertilizerType.DRY)
    bottle: Bottle = Field(default=Bottle.A)

    @field_validator("elements")
    @classmethod
    def check_elements(cls, v: Dict[str, float]) -> Dict[str, float]:
        _check_element_names(v)
        for name, pct in v.items():
            if not 0 <= pct <= 100:
                raise ValueError(f"Content of {name} must be between 0 and 100 percent")
        return v

    def to_profile(self) -> FertilizerProfile:
        return FertilizerProfile(
            id=self.id,
            name=self.name,
            elements=tuple(elements_from_mapping(self.elements)),
            density=self.density,
            cost=self.cost,
            type=self.type,
            bottle=self.bottle,
        )


class SolveRequest(BaseModel):
    """Request schema for an automatic calculation."""
    name: str = Field(default=DEFAULT_CALCULATION_NAME, min_length=1, max_length=100)
    reference_solution_id: Optional[str] = Field(None, description="Prefill targets from a reference solution")
    elements: Dict[str, TargetElementIn] = Field(default_factory=dict, description="Targets by element name")
    fertilizer_ids: List[str] = Field(default_factory=list, description="Catalog fertilizer ids")
    fertilizers: List[FertilizerIn] = Field(default_factory=list, description="Inline fertilizers")
    volume: float = Field(default=DEFAULT_VOLUME_L, gt=0, description="Water volume in litres")
    cost_factor: float = Field(default=DEFAULT_COST_FACTOR, ge=0, description="Cost penalty, 0 disables")

    @field_validator("elements")
    @classmethod
    def check_elements(cls, v: Dict[str, TargetElementIn]) -> Dict[str, TargetElementIn]:
        return _check_element_names(v)


class ManualDoseIn(BaseModel):
    fertilizer_id: str
    x: float = Field(ge=0, description="Dose in mg/L equivalent")


class ManualRequest(BaseModel):
    """Request schema for manual mode: doses are given, targets follow."""
    doses: List[ManualDoseIn] = Field(default_factory=list)
    fertilizers: List[FertilizerIn] = Field(default_factory=list, description="Inline fertilizers")


# ==================== RESPONSE SCHEMAS ====================

class DoseOut(BaseModel):
    """Dose of one fertilizer."""
    fertilizer_id: str
    fertilizer_name: str
    bottle: Bottle
    x: float = Field(description="Dose in mg/L equivalent")
    amount: float = Field(description="Physical amount for the volume")
    unit: str


class ElementBalanceOut(BaseModel):
    """Target vs achieved for one nutrient."""
    element: str
    target_ppm: float
    achieved_ppm: float
    deviation_pct: Optional[float] = None


class RatioOut(BaseModel):
    nh4_percent: float
    nk: float
    kca: float
    kmg: float
    camg: float


class CalculationReportResponse(BaseModel):
    """Response schema for an automatic calculation."""
    name: str
    status: SolveStatus
    message: str = ""
    volume: float
    doses: List[DoseOut] = Field(default_factory=list)
    elements: List[ElementBalanceOut] = Field(default_factory=list)
    total_ppm: float = 0.0
    total_target_ppm: float = 0.0
    total_deviation_pct: float = 0.0
    ratio: Optional[RatioOut] = None
    ec: float = 0.0
    cost: float = 0.0
    text: str = ""


class ManualResponse(BaseModel):
    """Achieved ppm per element for manual doses."""
    elements: Dict[str, float]


class FertilizerOut(BaseModel):
    id: str
    name: str
    type: FertilizerType
    bottle: Bottle
    density: float
    cost: float
    elements: Dict[str, float]


class FertilizerListResponse(BaseModel):
    fertilizers: List[FertilizerOut]
    total: int


class ReferenceSolutionOut(BaseModel):
    id: str
    name: str
    elements: Dict[str, float]


class ReferenceSolutionListResponse(BaseModel):
    solutions: List[ReferenceSolutionOut]
    total: int
