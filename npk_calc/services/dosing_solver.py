"""
Nutrient Dosing Solver.

Finds fertilizer doses x >= 0 (mg/L equivalent) whose combined nutrient
contribution matches the target profile in a weighted least-squares sense:

1. Weighting: every target with |value| >= 0.001 gets a weight
   k = exp(ln 1e-4 + (ln 1e4 - ln 1e-4) * ratio) / value. Smaller targets
   and higher importance ratios are fit more tightly.
2. Normal equations: A[i][j] = sum_k c_ik * c_jk * k_k (contents as
   fractions), B[j] = sum_k target_k * k_k * c_jk - cost_j * cost_factor.
3. Classification: rank(A) vs rank([A|B]) decides unique, underdetermined
   or inconsistent.
4. Solve: Cholesky factorization inside an active-set loop that fixes
   negative doses to zero and re-solves the reduced system.

The active set is a best-effort approximation of nonnegative least
squares: it does not check Lagrange multiplier signs.
"""
import logging
import math
from enum import Enum
from typing import List, Sequence, Tuple

from npk_calc.services.dosing_matrix import Matrix
from npk_calc.services.dosing_models import FertilizerProfile, TargetElement, WeightedElement
from npk_calc.services.dosing_rules import (
    ZERO_TARGET_EPS,
    WEIGHT_POSITION_MIN,
    WEIGHT_POSITION_MAX,
    WEIGHT_LOG_MIN,
    WEIGHT_LOG_MAX,
    RIDGE_TRIGGER_DIAGONAL,
    RIDGE,
    RIDGE_RETRY,
    NEGATIVE_TOLERANCE,
    CLAMP_TOLERANCE,
    MIN_ACTIVE_SET_ITERATIONS,
)

logger = logging.getLogger(__name__)


class CholeskyDecompositionError(ValueError):
    """Raised when a matrix is not positive-definite on the solved indices."""


class Solvability(str, Enum):
    UNIQUE = "unique"
    UNDERDETERMINED = "underdetermined"
    INCONSISTENT = "inconsistent"


# ==================== WEIGHTING ====================

def to_log(position: float) -> float:
    """Map an importance position in [0, 1] log-linearly onto [1e-4, 1e4]."""
    scale = (WEIGHT_LOG_MAX - WEIGHT_LOG_MIN) / (WEIGHT_POSITION_MAX - WEIGHT_POSITION_MIN)
    return math.exp(WEIGHT_LOG_MIN + scale * (position - WEIGHT_POSITION_MIN))


def weigh_elements(targets: Sequence[TargetElement]) -> List[WeightedElement]:
    """
    Derive the per-solve weight view of every target.

    Targets are not modified. Excluded targets keep k = 0 and zero = True.
    """
    weighted = []
    for e in targets:
        if abs(e.value) < ZERO_TARGET_EPS:
            weighted.append(WeightedElement(value=e.value, zero=True))
            continue
        # Water analysis is not subtracted yet; the adjusted target is the raw target.
        value_minus_water = e.value
        weighted.append(WeightedElement(
            value=e.value,
            value_minus_water=value_minus_water,
            k=to_log(e.ratio) / e.value,
            zero=False,
        ))
    return weighted


def count_active_elements(weighted: Sequence[WeightedElement]) -> int:
    return sum(1 for e in weighted if not e.zero)


# ==================== NORMAL EQUATIONS ====================

def build_normal_equations(
    fertilizers: Sequence[FertilizerProfile],
    weighted: Sequence[WeightedElement],
    cost_factor: float = 0.0,
) -> Tuple[Matrix, List[float]]:
    """
    Assemble the weighted least-squares system A x = B.

    Args:
        fertilizers: Selected fertilizers, in solve order
        weighted: Output of weigh_elements()
        cost_factor: Penalty per unit of fertilizer cost, 0 disables it

    Returns:
        (A, B) with A symmetric n x n and B of length n
    """
    n = len(fertilizers)
    active = [k for k, e in enumerate(weighted) if not e.zero]

    a = Matrix.create(n, n)
    b = [0.0] * n

    for j, fert in enumerate(fertilizers):
        for k in active:
            e = weighted[k]
            b[j] += e.value_minus_water * e.k * fert.elements[k] * 0.01 - fert.cost * cost_factor

    for i in range(n):
        for j in range(i, n):
            total = 0.0
            for k in active:
                ci = fertilizers[i].elements[k] * 0.01
                cj = fertilizers[j].elements[k] * 0.01
                total += ci * cj * weighted[k].k
            a.s(i, j, total)
            a.s(j, i, total)

    return a, b


# ==================== CLASSIFICATION ====================

def classify_system(a: Matrix, b: Sequence[float]) -> Solvability:
    """Compare rank(A) with rank([A|B])."""
    rank_a = a.rank
    rank_ext = a.clone().add_col(b).rank
    n = len(b)

    logger.debug(f"rank(A)={rank_a}, rank([A|B])={rank_ext}, n={n}")

    if rank_a != rank_ext:
        return Solvability.INCONSISTENT
    if rank_a < n:
        return Solvability.UNDERDETERMINED
    return Solvability.UNIQUE


# ==================== DIRECT SOLVE ====================

def cholesky_factor(a: Matrix) -> Matrix:
    """
    Lower triangular L with L * L^T = A.

    Raises:
        CholeskyDecompositionError: if a residual diagonal is not positive
    """
    n = a.n
    lower = Matrix.create(n, n)

    for i in range(n):
        for j in range(i + 1):
            total = 0.0
            if j == i:
                for k in range(j):
                    total += lower.g(j, k) * lower.g(j, k)
                residual = a.g(j, j) - total
                if not residual > 0.0 or not math.isfinite(residual):
                    raise CholeskyDecompositionError(
                        f"Matrix is not positive-definite (residual {residual!r} at {j})"
                    )
                lower.s(j, j, math.sqrt(residual))
            else:
                for k in range(j):
                    total += lower.g(i, k) * lower.g(j, k)
                lower.s(i, j, (a.g(i, j) - total) / lower.g(j, j))

    return lower


def solve_cholesky(a: Matrix, b: Sequence[float]) -> List[float]:
    """Solve A x = B for symmetric positive-definite A."""
    n = len(b)
    if n == 0:
        return []

    lower = cholesky_factor(a)
    y = [0.0] * n
    x = [0.0] * n

    # L y = B
    for i in range(n):
        total = 0.0
        for j in range(i):
            total += y[j] * lower.g(i, j)
        y[i] = (b[i] - total) / lower.g(i, i)

    # L^T x = y
    upper = lower.transpose()
    for i in range(n - 1, -1, -1):
        total = 0.0
        for j in range(n - 1, i, -1):
            total += x[j] * upper.g(i, j)
        x[i] = (y[i] - total) / upper.g(i, i)

    if not all(math.isfinite(v) for v in x):
        raise CholeskyDecompositionError("Solution is not finite")
    return x


# ==================== NONNEGATIVE SOLVE ====================

def _reduced_system(a: Matrix, b: Sequence[float], free_idx: List[int]) -> Tuple[Matrix, List[float]]:
    m = len(free_idx)
    a_free = Matrix.create(m, m)
    b_free = [0.0] * m
    for i in range(m):
        b_free[i] = b[free_idx[i]]
        for j in range(m):
            a_free.s(i, j, a.g(free_idx[i], free_idx[j]))
    return a_free, b_free


def _add_ridge(a: Matrix, ridge: float) -> None:
    for i in range(a.m):
        a.s(i, i, a.g(i, i) + ridge)


def solve_nonnegative(a: Matrix, b: Sequence[float]) -> List[float]:
    """
    Active-set solve of A x = B with x >= 0.

    Each round solves the system restricted to the free variables and fixes
    every variable that came out negative to zero. Stops when no free
    variable is negative, or after max(10, n) rounds, after which remaining
    negatives are clamped to zero.

    Raises:
        CholeskyDecompositionError: if a reduced system fails even after the
            regularized retry
    """
    n = len(b)
    max_iter = max(MIN_ACTIVE_SET_ITERATIONS, n)
    fixed = [False] * n
    x = [0.0] * n

    for iteration in range(max_iter):
        free_idx = [i for i in range(n) if not fixed[i]]
        if not free_idx:
            return x

        a_free, b_free = _reduced_system(a, b, free_idx)

        if any(abs(a_free.g(i, i)) < RIDGE_TRIGGER_DIAGONAL for i in range(len(free_idx))):
            _add_ridge(a_free, RIDGE)

        try:
            x_free = solve_cholesky(a_free, b_free)
        except CholeskyDecompositionError as e:
            logger.warning(f"Reduced system failed ({e}), retrying with ridge {RIDGE_RETRY}")
            _add_ridge(a_free, RIDGE_RETRY)
            x_free = solve_cholesky(a_free, b_free)

        any_negative = False
        for k, idx in enumerate(free_idx):
            x[idx] = x_free[k]
            if x[idx] < -NEGATIVE_TOLERANCE:
                any_negative = True

        if not any_negative:
            for i in range(n):
                if -CLAMP_TOLERANCE < x[i] < 0:
                    x[i] = 0.0
            return x

        fixed_this_round = False
        for idx in free_idx:
            if x[idx] < 0:
                fixed[idx] = True
                x[idx] = 0.0
                fixed_this_round = True

        logger.debug(f"Active set round {iteration}: fixed {[i for i in range(n) if fixed[i]]}")

        if not fixed_this_round:
            break

    logger.warning(f"Active-set loop did not converge in {max_iter} rounds, clamping negative doses")
    return [v if v >= 0 else 0.0 for v in x]
