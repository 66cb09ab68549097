"""
Numeric thresholds and defaults for the dosing solver.

Centralized here so the solver, the report and the tests agree on the
same tolerances.
"""
import math

# Targets below this magnitude are excluded from the least-squares system.
ZERO_TARGET_EPS = 0.001

# Importance position 0..1 is mapped log-linearly onto 1e-4..1e4.
WEIGHT_POSITION_MIN = 0.0
WEIGHT_POSITION_MAX = 1.0
WEIGHT_LOG_MIN = math.log(0.0001)
WEIGHT_LOG_MAX = math.log(10000)

RANK_EPS = 1e-9

# Active-set nonnegativity loop
RIDGE_TRIGGER_DIAGONAL = 1e-14
RIDGE = 1e-9
RIDGE_RETRY = 1e-8
NEGATIVE_TOLERANCE = 1e-12
CLAMP_TOLERANCE = 1e-10
MIN_ACTIVE_SET_ITERATIONS = 10

# Deviations smaller than this are reported as exactly zero.
DEVIATION_ZERO_EPS = 0.001

DEFAULT_RATIO = 0.5
DEFAULT_VOLUME_L = 1.0
DEFAULT_COST_FACTOR = 0.0
DEFAULT_CALCULATION_NAME = "New Calculation"
