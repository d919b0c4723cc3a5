#!/usr/bin/env python3
"""
Calibration Fitting Script

Fits the confidence calibration curve from labeled outcomes and writes it
where the identify engine loads it (clearout/data/calibration.json).

Input is either JSON (a list of {"score": float, "label": 0|1} objects or
[score, label] pairs) or CSV with `score` and `label` columns.

Usage:
    python scripts/fit_calibration.py outcomes.json [--output clearout/data/calibration.json]
"""

import argparse
import csv
import json
import sys
from pathlib import Path
from typing import List, Tuple

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from clearout.core.config import settings
from clearout.core.exceptions import CalibrationError
from clearout.core.logging import get_logger, setup_logging
from clearout.engines.identify.calibration import fit_isotonic

logger = get_logger(__name__)


def read_pairs(path: Path) -> List[Tuple[float, int]]:
    """Read (score, label) pairs from a JSON or CSV file."""
    if path.suffix.lower() == ".csv":
        with open(path, "r", encoding="utf-8", newline="") as f:
            return [(float(row["score"]), int(row["label"])) for row in csv.DictReader(f)]

    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    pairs = []
    for row in raw:
        if isinstance(row, dict):
            pairs.append((float(row["score"]), int(row["label"])))
        else:
            score, label = row
            pairs.append((float(score), int(label)))
    return pairs


def main():
    parser = argparse.ArgumentParser(
        description="Fit the identify confidence calibration curve"
    )
    parser.add_argument(
        "outcomes",
        type=str,
        help="JSON or CSV file of labeled (score, label) outcomes"
    )
    parser.add_argument(
        "--output",
        type=str,
        default=str(settings.DATA_DIR / "calibration.json"),
        help="Where to write the calibration map"
    )
    args = parser.parse_args()

    setup_logging(json_format=False)

    try:
        pairs = read_pairs(Path(args.outcomes))
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.error("outcomes_unreadable", path=args.outcomes, error=str(e))
        return 1

    try:
        cal = fit_isotonic(pairs)
    except CalibrationError as e:
        logger.error("calibration_fit_failed", error=str(e), samples=len(pairs))
        return 1

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(cal.to_payload(), indent=2), encoding="utf-8")

    positives = sum(label for _, label in pairs)
    logger.info(
        "calibration_written",
        path=str(output),
        samples=len(pairs),
        positives=positives,
        points=len(cal.xs),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
