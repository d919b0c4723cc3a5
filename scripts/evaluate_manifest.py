#!/usr/bin/env python3
"""
Manifest Evaluation Script

Runs the identify pipeline over a labeled user manifest and reports
per-item predictions and category accuracy. Optionally writes the
(raw score, correct) outcomes for scripts/fit_calibration.py.

Manifest format:
    {"items": [{"id": "...", "images": ["a.jpg"], "category": "...",
                "ground_truth": {"category": "...", "brand": "..."}}]}

Image paths are relative to the manifest's directory.

Usage:
    python scripts/evaluate_manifest.py path/to/user_manifest.json [--stages barcode,ocr] [--outcomes outcomes.json]
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from clearout.core.config import settings
from clearout.core.logging import get_logger, setup_logging
from clearout.engines.identify.repositories import FileReferenceData, ReferenceRepository
from clearout.engines.identify.rules import load_allowed_categories
from clearout.engines.identify.schemas import STAGES
from clearout.engines.identify.services import IdentifyService

logger = get_logger(__name__)


class UncalibratedReferenceData(FileReferenceData):
    """Shipped reference data minus the calibration curve, so confidence is the raw score."""

    def load_calibration(self):
        return None


def load_items(manifest_path: Path) -> List[Dict[str, Any]]:
    with open(manifest_path, "r", encoding="utf-8") as f:
        manifest = json.load(f)
    items = manifest if isinstance(manifest, list) else manifest.get("items", [])
    return [item for item in items if isinstance(item, dict)]


def expected_category(item: Dict[str, Any]) -> str:
    return item.get("category") or (item.get("ground_truth") or {}).get("category") or ""


def read_images(base_dir: Path, paths: List[str]) -> List[bytes]:
    buffers = []
    for p in paths:
        try:
            buffers.append((base_dir / p).read_bytes())
        except OSError as e:
            logger.warning("manifest_image_unreadable", path=str(base_dir / p), error=str(e))
    return buffers


async def evaluate(manifest_path: Path, stages: List[str], timeout_ms: int, allow_filename_text: bool) -> Dict[str, Any]:
    items = load_items(manifest_path)
    allowed = load_allowed_categories(manifest_path)
    service = IdentifyService(reference=ReferenceRepository(UncalibratedReferenceData(settings.DATA_DIR)))

    rows = []
    correct = 0
    for item in items:
        paths = list(item.get("images") or [])
        result = await service.analyze(
            read_images(manifest_path.parent, paths),
            {
                "imageNames": [Path(p).name for p in paths],
                "timeoutMs": timeout_ms,
                "enableStages": {stage: stage in stages for stage in STAGES},
                "userAllowedCategories": allowed,
                "allowFilenameText": allow_filename_text,
            },
        )
        predicted = result.attributes.product_category or result.attributes.category or ""
        expected = expected_category(item)
        hit = bool(predicted and expected and predicted == expected)
        correct += int(hit)

        rows.append({
            "id": item.get("id") or item.get("item_id") or item.get("name") or "",
            "expected": expected,
            "predicted": predicted,
            "resolution_level": result.resolution_level.value,
            "confidence": result.confidence,
            "next_step": result.next_step.value,
            "brand": result.attributes.brand,
            "correct": hit,
        })
        logger.info("manifest_item_evaluated", **rows[-1])

    return {
        "total": len(rows),
        "correct": correct,
        "accuracy": round(correct / len(rows), 4) if rows else 0.0,
        "items": rows,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Evaluate the identify pipeline against a labeled manifest"
    )
    parser.add_argument(
        "manifest",
        type=str,
        help="Path to user_manifest.json"
    )
    parser.add_argument(
        "--stages",
        type=str,
        default="barcode,ocr",
        help="Comma-separated stages to enable"
    )
    parser.add_argument(
        "--timeout-ms",
        type=int,
        default=2000,
        help="Per-stage timeout"
    )
    parser.add_argument(
        "--allow-filename-text",
        action="store_true",
        help="Let image filenames contribute evidence"
    )
    parser.add_argument(
        "--outcomes",
        type=str,
        default=None,
        help="Write (score, label) outcomes for calibration fitting"
    )
    args = parser.parse_args()

    setup_logging(json_format=False)

    manifest_path = Path(args.manifest)
    if not manifest_path.is_file():
        logger.error("manifest_not_found", path=str(manifest_path))
        return 1

    stages = [s.strip() for s in args.stages.split(",") if s.strip()]
    report = asyncio.run(evaluate(manifest_path, stages, args.timeout_ms, args.allow_filename_text))
    logger.info("manifest_accuracy", accuracy=report["accuracy"], correct=report["correct"], total=report["total"])

    if args.outcomes:
        outcomes = [{"score": row["confidence"], "label": int(row["correct"])} for row in report["items"]]
        Path(args.outcomes).write_text(json.dumps(outcomes, indent=2), encoding="utf-8")
        logger.info("outcomes_written", path=args.outcomes, samples=len(outcomes))
    return 0


if __name__ == "__main__":
    sys.exit(main())
