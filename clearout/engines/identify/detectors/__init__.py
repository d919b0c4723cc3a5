from clearout.engines.identify.detectors.barcode import BarcodeDetector, map_barcode_to_category
from clearout.engines.identify.detectors.base import Detector, run_with_deadline
from clearout.engines.identify.detectors.neighbors import NeighborDetector
from clearout.engines.identify.detectors.ocr import OcrDetector
from clearout.engines.identify.detectors.vision import (
    LiveVisionAdapter,
    MockVisionAdapter,
    VisionAdapter,
    VisionDetector,
    get_vision_adapter,
)

__all__ = [
    "BarcodeDetector",
    "Detector",
    "LiveVisionAdapter",
    "MockVisionAdapter",
    "NeighborDetector",
    "OcrDetector",
    "VisionAdapter",
    "VisionDetector",
    "get_vision_adapter",
    "map_barcode_to_category",
    "run_with_deadline",
]
