"""
Check node evaluation: per-reading thresholds and rollup logic.

Each reading yields True (pass), False (fail) or None (indeterminate: the
entry is empty or not a finite number). A rollup over results containing
any None is itself None; the caller must reject the evaluation rather than
guess an outcome.

Truth table (True means the check is *good*)::

    all_good  -> every reading passed
    any_bad   -> no reading failed (same as all_good)
    all_bad   -> not every reading failed (at least one passed)
    any_good  -> at least one reading passed
    custom    -> boolean expression over {reading_id: result}
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from typing import Any

from fieldops.domain.diagnostics import CheckNodeData, Reading, ReadingOperator, RollupLogic
from fieldops.domain.expression import ExpressionError, evaluate_expression

logger = logging.getLogger(__name__)


def parse_reading_value(raw: Any) -> float | None:
    """Parse a technician's entry; None when it is not a finite number."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    return value if math.isfinite(value) else None


def evaluate_reading(reading: Reading, raw: Any) -> bool | None:
    """Apply a reading's operator to one entry."""
    value = parse_reading_value(raw)
    if value is None:
        return None
    match reading.operator:
        case ReadingOperator.LT:
            return value < reading.value
        case ReadingOperator.LTE:
            return value <= reading.value
        case ReadingOperator.GT:
            return value > reading.value
        case ReadingOperator.GTE:
            return value >= reading.value
        case ReadingOperator.BETWEEN:
            upper = reading.max if reading.max is not None else reading.value
            return reading.value <= value <= upper
    raise ValueError(f"Unsupported operator: {reading.operator}")


def rollup(
    logic: RollupLogic,
    results: Mapping[str, bool | None],
    expression: str = "",
) -> bool | None:
    """
    Combine per-reading results into one check outcome.

    Args:
        logic: Rollup rule of the check node
        results: Result per reading id, in reading order
        expression: Boolean expression for ``RollupLogic.CUSTOM``

    Returns:
        True (good), False (bad) or None when indeterminate
    """
    values = list(results.values())
    if not values or any(v is None for v in values):
        return None

    match logic:
        case RollupLogic.ALL_GOOD | RollupLogic.ANY_BAD:
            return all(values)
        case RollupLogic.ALL_BAD | RollupLogic.ANY_GOOD:
            return any(values)
        case RollupLogic.CUSTOM:
            try:
                return evaluate_expression(expression, results)
            except ExpressionError as e:
                logger.warning("Custom rollup expression failed: %s", e)
                return None
    raise ValueError(f"Unsupported rollup logic: {logic}")


def evaluate_check(
    data: CheckNodeData, entries: Mapping[str, Any]
) -> tuple[dict[str, bool | None], bool | None]:
    """
    Evaluate every reading of a check node and roll the results up.

    Missing entries count as indeterminate.
    """
    readings: Sequence[Reading] = data.readings
    results = {r.id: evaluate_reading(r, entries.get(r.id)) for r in readings}
    return results, rollup(data.rollup_logic, results, data.custom_expression)
