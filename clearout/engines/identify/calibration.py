"""
Confidence Calibration

Maps the heuristic raw fusion score onto an empirically observed
probability with a monotonic piecewise-linear curve. The curve is fitted
offline (see scripts/fit_calibration.py) with isotonic regression over
labeled outcomes and shipped as calibration.json.

No curve means identity: a missing, malformed or too-short map disables
calibration rather than failing the request.
"""

from typing import Any, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, model_validator

from clearout.core.exceptions import CalibrationError


class CalibrationMap(BaseModel):
    """Piecewise-linear monotonic map; `xs` strictly increasing, `ys` non-decreasing, len >= 2."""
    model_config = ConfigDict(frozen=True)

    xs: Tuple[float, ...]
    ys: Tuple[float, ...]

    @model_validator(mode="after")
    def _check_shape(self) -> "CalibrationMap":
        if len(self.xs) != len(self.ys):
            raise ValueError("xs and ys must have the same length")
        if len(self.xs) < 2:
            raise ValueError("calibration map needs at least two points")
        if any(b <= a for a, b in zip(self.xs, self.xs[1:])):
            raise ValueError("xs must be strictly increasing")
        if any(b < a for a, b in zip(self.ys, self.ys[1:])):
            raise ValueError("ys must be non-decreasing")
        return self

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["CalibrationMap"]:
        """Build a map from decoded JSON, or None if it is not a valid map."""
        if not isinstance(payload, dict):
            return None
        try:
            return cls(xs=tuple(payload.get("xs") or ()), ys=tuple(payload.get("ys") or ()))
        except (ValueError, TypeError):
            return None

    def to_payload(self) -> dict:
        return {"xs": list(self.xs), "ys": list(self.ys)}


def apply_calibration(score: float, cal: Optional[CalibrationMap] = None) -> float:
    """Interpolate `score` on the curve; identity when `cal` is None."""
    if cal is None:
        return score
    xs, ys = cal.xs, cal.ys
    if score <= xs[0]:
        return ys[0]
    if score >= xs[-1]:
        return ys[-1]
    for i in range(len(xs) - 1):
        if xs[i] <= score <= xs[i + 1]:
            t = (score - xs[i]) / (xs[i + 1] - xs[i])
            return ys[i] + t * (ys[i + 1] - ys[i])
    return score


def _pool_adjacent_violators(ys: Sequence[float]) -> List[float]:
    """Least-squares non-decreasing fit of `ys` (equal weights)."""
    # Each block: [sum, count]; merged while the previous mean exceeds the next.
    blocks: List[List[float]] = []
    for y in ys:
        blocks.append([float(y), 1.0])
        while len(blocks) > 1 and blocks[-2][0] / blocks[-2][1] > blocks[-1][0] / blocks[-1][1]:
            total, count = blocks.pop()
            blocks[-1][0] += total
            blocks[-1][1] += count

    fitted: List[float] = []
    for total, count in blocks:
        fitted.extend([total / count] * int(count))
    return fitted


def fit_isotonic(pairs: Iterable[Tuple[float, int]]) -> CalibrationMap:
    """Fit a calibration map from (score, label) pairs, label in {0, 1}.

    Sorts by score, runs pool-adjacent-violators over the labels, then
    collapses duplicate scores to the mean of their fitted values.

    Raises:
        CalibrationError: fewer than two distinct scores, or a bad label.
    """
    rows = []
    for score, label in pairs:
        if label not in (0, 1):
            raise CalibrationError(f"label must be 0 or 1, got {label!r}")
        rows.append((float(score), float(label)))
    rows.sort(key=lambda r: r[0])

    xs = [r[0] for r in rows]
    ys = _pool_adjacent_violators([r[1] for r in rows])

    uniq_xs: List[float] = []
    sums: List[float] = []
    counts: List[int] = []
    for x, y in zip(xs, ys):
        if uniq_xs and x == uniq_xs[-1]:
            sums[-1] += y
            counts[-1] += 1
        else:
            uniq_xs.append(x)
            sums.append(y)
            counts.append(1)

    if len(uniq_xs) < 2:
        raise CalibrationError("need at least two distinct scores to fit a calibration map")

    uniq_ys = [s / c for s, c in zip(sums, counts)]
    return CalibrationMap(xs=tuple(uniq_xs), ys=tuple(uniq_ys))
