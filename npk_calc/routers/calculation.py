"""
Nutrient Solution Calculation Router.
Provides endpoints for automatic and manual dosing calculations.
"""
from typing import List
from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse
import logging
import re

from npk_calc.schemas.calculation_schemas import (
    CalculationReportResponse,
    DoseOut,
    ElementBalanceOut,
    FertilizerIn,
    FertilizerListResponse,
    FertilizerOut,
    ManualRequest,
    ManualResponse,
    RatioOut,
    ReferenceSolutionListResponse,
    ReferenceSolutionOut,
    SolveRequest,
)
from npk_calc.services.calculation_excel_service import calculation_excel_service
from npk_calc.services.calculation_service import evaluate_manual, solve
from npk_calc.services.catalog_service import (
    CatalogError,
    UnknownFertilizerError,
    UnknownSolutionError,
    get_fertilizer,
    get_fertilizers,
    get_reference_solution,
    get_reference_solutions,
)
from npk_calc.services.dosing_models import DosingResult, FertilizerProfile, TargetElement, default_targets
from npk_calc.services.dosing_report import CalculationReport
from npk_calc.services.nutrient_elements import ELEMENTS_MAX, element_index, elements_to_mapping, to_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calculation", tags=["calculation"])


def _resolve_fertilizers(ids: List[str], inline: List[FertilizerIn]) -> List[FertilizerProfile]:
    """Inline fertilizers first, then catalog ids not already given inline."""
    fertilizers = [f.to_profile() for f in inline]
    known = {f.id for f in fertilizers}
    for fertilizer_id in ids:
        if fertilizer_id in known:
            continue
        try:
            fertilizers.append(get_fertilizer(fertilizer_id))
        except UnknownFertilizerError:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Fertilizer '{fertilizer_id}' not found"
            )
        except CatalogError as e:
            logger.error(f"Catalog unavailable: {e}")
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Catalog unavailable")
        known.add(fertilizer_id)
    return fertilizers


def _build_targets(request: SolveRequest) -> List[TargetElement]:
    targets = default_targets()
    if request.reference_solution_id:
        try:
            solution = get_reference_solution(request.reference_solution_id)
        except UnknownSolutionError:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Reference solution '{request.reference_solution_id}' not found"
            )
        for i in range(ELEMENTS_MAX):
            targets[i].set_value(solution.elements[i])
    for name, target in request.elements.items():
        ix = element_index(name)
        targets[ix].set_value(target.value)
        targets[ix].ratio = target.ratio
    return targets


def _report_to_response(report: CalculationReport, name: str) -> CalculationReportResponse:
    doses = [
        DoseOut(
            fertilizer_id=a.fertilizer.id,
            fertilizer_name=a.fertilizer.name,
            bottle=a.fertilizer.bottle,
            x=round(a.x, 4),
            amount=round(a.amount, 4),
            unit=a.unit,
        )
        for a in report.amounts
    ]
    elements = []
    if report.ok:
        elements = [
            ElementBalanceOut(
                element=to_name(k),
                target_ppm=report.targets[k],
                achieved_ppm=round(report.achieved_ppm[k], 4),
                deviation_pct=round(report.deviation_pct[k], 4) if report.deviation_pct[k] is not None else None,
            )
            for k in range(ELEMENTS_MAX)
        ]
    ratio = RatioOut(**report.ratio.to_dict()) if report.ratio is not None else None
    return CalculationReportResponse(
        name=name,
        status=report.status,
        message=report.message,
        volume=report.volume,
        doses=doses,
        elements=elements,
        total_ppm=round(report.total_ppm, 4),
        total_target_ppm=round(report.total_target_ppm, 4),
        total_deviation_pct=round(report.total_deviation_pct, 4),
        ratio=ratio,
        ec=round(report.ec, 4),
        cost=round(report.cost, 4),
        text=report.text,
    )


def _run_solve(request: SolveRequest) -> CalculationReport:
    targets = _build_targets(request)
    fertilizers = _resolve_fertilizers(request.fertilizer_ids, request.fertilizers)
    logger.info(f"[Solve] '{request.name}' with {len(fertilizers)} fertilizers, volume {request.volume} L")
    return solve(targets, fertilizers, request.volume, request.cost_factor)


@router.post("/solve", response_model=CalculationReportResponse)
def solve_calculation(request: SolveRequest):
    """
    Solve doses for the given targets and fertilizers.

    Outcomes without results (no elements, infinite results, no solution)
    are returned with their status and message, not as errors.
    """
    report = _run_solve(request)
    return _report_to_response(report, request.name)


@router.post("/manual", response_model=ManualResponse)
def manual_calculation(request: ManualRequest):
    """Achieved ppm for operator-given doses. No solve is run."""
    fertilizers = _resolve_fertilizers([d.fertilizer_id for d in request.doses], request.fertilizers)
    by_id = {f.id: f for f in fertilizers}
    doses = [DosingResult(by_id[d.fertilizer_id], d.x) for d in request.doses]
    achieved = elements_to_mapping([t.value for t in evaluate_manual(doses)])
    return ManualResponse(elements={name: round(ppm, 4) for name, ppm in achieved.items()})


@router.get("/fertilizers", response_model=FertilizerListResponse)
def list_fertilizers():
    try:
        fertilizers = get_fertilizers()
    except CatalogError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Catalog unavailable")
    items = [
        FertilizerOut(
            id=f.id,
            name=f.name,
            type=f.type,
            bottle=f.bottle,
            density=f.density,
            cost=f.cost,
            elements={to_name(k): v for k, v in enumerate(f.elements) if v},
        )
        for f in fertilizers
    ]
    return FertilizerListResponse(fertilizers=items, total=len(items))


@router.get("/reference-solutions", response_model=ReferenceSolutionListResponse)
def list_reference_solutions():
    try:
        solutions = get_reference_solutions()
    except CatalogError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Catalog unavailable")
    items = [
        ReferenceSolutionOut(
            id=s.id,
            name=s.name,
            elements={to_name(k): v for k, v in enumerate(s.elements) if v},
        )
        for s in solutions
    ]
    return ReferenceSolutionListResponse(solutions=items, total=len(items))


@router.post("/excel")
def export_calculation_excel(request: SolveRequest):
    """Solve and return the report as an Excel workbook."""
    report = _run_solve(request)
    if not report.ok:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=report.message)

    buffer = calculation_excel_service.generate_calculation_excel(report, request.name)
    safe_name = re.sub(r"[^A-Za-z0-9_-]+", "_", request.name).strip("_") or "calculation"
    return StreamingResponse(
        buffer,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{safe_name}.xlsx"'},
    )
