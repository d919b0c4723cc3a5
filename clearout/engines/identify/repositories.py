"""
Reference Data Repositories

Static tables the identify engine reads on every call:
- keyword rules (pattern, category, optional brand)
- category taxonomy (id + synonyms)
- brand lexicon (normalized key -> display name)
- registration number (RN) -> brand map
- calibration curve
- visual gallery (reference images, embedded once)

A `ReferenceDataProvider` knows where the data lives (files in
production, dicts in tests). `ReferenceRepository` wraps a provider with
compute-once cells and degrades any dataset that fails to load to its
no-op value, so a broken file never breaks a request.
"""

import json
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Pattern, Sequence, Tuple, TypeVar, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, ValidationError

from clearout.core.cache import LazyCell
from clearout.core.config import settings
from clearout.core.exceptions import ReferenceDataError
from clearout.core.logging import get_logger
from clearout.engines.identify.calibration import CalibrationMap
from clearout.engines.identify.embeddings import Embedder, HashEmbedder

logger = get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# Reference Records
# =============================================================================

class KeywordRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    pattern: str
    category: str
    brand: Optional[str] = None


class TaxonomyEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    synonyms: Tuple[str, ...] = ()


class CompiledRule:
    """Keyword rule with its pattern compiled case-insensitively."""

    __slots__ = ("regex", "category", "brand")

    def __init__(self, regex: Pattern[str], category: str, brand: Optional[str]):
        self.regex = regex
        self.category = category
        self.brand = brand

    def __repr__(self) -> str:
        return f"CompiledRule({self.regex.pattern!r}, {self.category!r}, {self.brand!r})"


class GalleryIndex:
    """Reference embeddings, one row per gallery image, in gallery order."""

    def __init__(self, ids: Sequence[str], vectors: np.ndarray):
        self.ids = tuple(ids)
        self.vectors = vectors

    def __len__(self) -> int:
        return len(self.ids)

    @classmethod
    def empty(cls, dim: int) -> "GalleryIndex":
        return cls((), np.zeros((0, dim), dtype=np.float64))


def normalize_rn(rn: str) -> str:
    """Canonical RN key: upper-case alphanumerics (`rn 12345` -> `RN12345`)."""
    return re.sub(r"[^A-Z0-9]", "", rn.upper())


# =============================================================================
# Providers
# =============================================================================

class ReferenceDataProvider(ABC):
    """Where reference data comes from."""

    @abstractmethod
    def load_rules(self) -> List[KeywordRule]:
        ...

    @abstractmethod
    def load_taxonomy(self) -> List[TaxonomyEntry]:
        ...

    @abstractmethod
    def load_brand_lexicon(self) -> Dict[str, str]:
        ...

    @abstractmethod
    def load_rn_map(self) -> Dict[str, str]:
        ...

    @abstractmethod
    def load_calibration(self) -> Optional[CalibrationMap]:
        ...

    @abstractmethod
    def load_gallery(self) -> List[Tuple[str, bytes]]:
        """Reference images as (id, raw bytes), in gallery order."""
        ...


class FileReferenceData(ReferenceDataProvider):
    """Reads reference data from JSON files and a gallery directory."""

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)

    def _read_json(self, name: str) -> Any:
        path = self.data_dir / name
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            raise ReferenceDataError(f"Reference file not found: {path}", dataset=name)
        except (OSError, ValueError) as e:
            raise ReferenceDataError(f"Reference file unreadable: {path}: {e}", dataset=name)

    def load_rules(self) -> List[KeywordRule]:
        raw = self._read_json("keyword_rules.json")
        try:
            return [KeywordRule(**r) for r in raw]
        except (TypeError, ValidationError) as e:
            raise ReferenceDataError(f"Malformed keyword rules: {e}", dataset="keyword_rules.json")

    def load_taxonomy(self) -> List[TaxonomyEntry]:
        raw = self._read_json("taxonomy.json")
        try:
            return [TaxonomyEntry(id=c["id"], synonyms=tuple(c.get("synonyms", []))) for c in raw]
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            raise ReferenceDataError(f"Malformed taxonomy: {e}", dataset="taxonomy.json")

    def load_brand_lexicon(self) -> Dict[str, str]:
        raw = self._read_json("brand_lexicon.json")
        if not isinstance(raw, dict):
            raise ReferenceDataError("Brand lexicon must be an object", dataset="brand_lexicon.json")
        return {str(k): str(v) for k, v in raw.items()}

    def load_rn_map(self) -> Dict[str, str]:
        raw = self._read_json("rn_map.json")
        if not isinstance(raw, dict):
            raise ReferenceDataError("RN map must be an object", dataset="rn_map.json")
        return {str(k): str(v) for k, v in raw.items()}

    def load_calibration(self) -> Optional[CalibrationMap]:
        path = self.data_dir / "calibration.json"
        if not path.exists():
            return None
        cal = CalibrationMap.from_payload(self._read_json("calibration.json"))
        if cal is None:
            raise ReferenceDataError("Malformed calibration map", dataset="calibration.json")
        return cal

    def load_gallery(self) -> List[Tuple[str, bytes]]:
        gallery_dir = self.data_dir / "gallery"
        if not gallery_dir.is_dir():
            return []
        out: List[Tuple[str, bytes]] = []
        for path in sorted(gallery_dir.iterdir()):
            if not path.is_file() or path.name.startswith("."):
                continue
            try:
                out.append((path.name, path.read_bytes()))
            except OSError as e:
                logger.warning("gallery_image_unreadable", path=str(path), error=str(e))
        return out


class InMemoryReferenceData(ReferenceDataProvider):
    """Reference data handed in directly (tests, notebooks)."""

    def __init__(
        self,
        rules: Optional[List[Union[KeywordRule, Dict[str, Any]]]] = None,
        taxonomy: Optional[List[Union[TaxonomyEntry, Dict[str, Any]]]] = None,
        brand_lexicon: Optional[Dict[str, str]] = None,
        rn_map: Optional[Dict[str, str]] = None,
        calibration: Optional[CalibrationMap] = None,
        gallery: Optional[List[Tuple[str, bytes]]] = None,
    ):
        self._rules = [r if isinstance(r, KeywordRule) else KeywordRule(**r) for r in (rules or [])]
        self._taxonomy = [t if isinstance(t, TaxonomyEntry) else TaxonomyEntry(**t) for t in (taxonomy or [])]
        self._brand_lexicon = dict(brand_lexicon or {})
        self._rn_map = dict(rn_map or {})
        self._calibration = calibration
        self._gallery = list(gallery or [])

    def load_rules(self) -> List[KeywordRule]:
        return list(self._rules)

    def load_taxonomy(self) -> List[TaxonomyEntry]:
        return list(self._taxonomy)

    def load_brand_lexicon(self) -> Dict[str, str]:
        return dict(self._brand_lexicon)

    def load_rn_map(self) -> Dict[str, str]:
        return dict(self._rn_map)

    def load_calibration(self) -> Optional[CalibrationMap]:
        return self._calibration

    def load_gallery(self) -> List[Tuple[str, bytes]]:
        return list(self._gallery)


# =============================================================================
# Repository
# =============================================================================

class ReferenceRepository:
    """Lazily loaded, process-wide reference data.

    Every dataset is loaded at most once; a dataset that fails to load is
    replaced by its empty value and a warning is logged.
    """

    _instance: Optional["ReferenceRepository"] = None
    _instance_lock = threading.Lock()

    def __init__(self, provider: ReferenceDataProvider, embedder: Optional[Embedder] = None):
        self.provider = provider
        self.embedder = embedder or HashEmbedder(settings.EMBEDDING_DIM)

        self._rules = LazyCell(self._load_rules, name="keyword_rules")
        self._taxonomy = LazyCell(
            lambda: self._safe_load("taxonomy", provider.load_taxonomy, []), name="taxonomy"
        )
        self._brand_lexicon = LazyCell(
            lambda: self._safe_load("brand_lexicon", provider.load_brand_lexicon, {}), name="brand_lexicon"
        )
        self._rn_map = LazyCell(self._load_rn_map, name="rn_map")
        self._calibration = LazyCell(
            lambda: self._safe_load("calibration", provider.load_calibration, None), name="calibration"
        )
        self._gallery = LazyCell(self._load_gallery, name="gallery")

    @classmethod
    def get_instance(cls) -> "ReferenceRepository":
        """Process-wide repository backed by files under settings.DATA_DIR."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls(FileReferenceData(settings.DATA_DIR))
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Reset singleton instance (for testing)."""
        with cls._instance_lock:
            cls._instance = None

    # -------------------------------------------------------------------------
    # Loaders
    # -------------------------------------------------------------------------

    def _safe_load(self, dataset: str, loader: Callable[[], T], fallback: T) -> T:
        try:
            value = loader()
        except ReferenceDataError as e:
            logger.warning("reference_data_unavailable", dataset=dataset, error=e.message)
            return fallback
        logger.info("reference_data_loaded", dataset=dataset)
        return value

    def _load_rules(self) -> List[CompiledRule]:
        compiled: List[CompiledRule] = []
        for rule in self._safe_load("keyword_rules", self.provider.load_rules, []):
            try:
                regex = re.compile(rule.pattern, re.IGNORECASE)
            except re.error as e:
                logger.warning("keyword_rule_invalid", pattern=rule.pattern, error=str(e))
                continue
            compiled.append(CompiledRule(regex, rule.category, rule.brand))
        return compiled

    def _load_rn_map(self) -> Dict[str, str]:
        raw = self._safe_load("rn_map", self.provider.load_rn_map, {})
        return {normalize_rn(k): v for k, v in raw.items()}

    def _load_gallery(self) -> GalleryIndex:
        images = self._safe_load("gallery", self.provider.load_gallery, [])
        if not images:
            return GalleryIndex.empty(self.embedder.dim)
        ids = [image_id for image_id, _ in images]
        vectors = np.stack([self.embedder.embed(data) for _, data in images])
        return GalleryIndex(ids, vectors)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    def rules(self) -> List[CompiledRule]:
        return self._rules.get()

    def taxonomy(self) -> List[TaxonomyEntry]:
        return self._taxonomy.get()

    def brand_lexicon(self) -> Dict[str, str]:
        return self._brand_lexicon.get()

    def rn_map(self) -> Dict[str, str]:
        return self._rn_map.get()

    def calibration(self) -> Optional[CalibrationMap]:
        return self._calibration.get()

    def gallery(self) -> GalleryIndex:
        return self._gallery.get()

    def category_ids(self) -> List[str]:
        return [entry.id for entry in self.taxonomy()]


def get_reference_repository() -> ReferenceRepository:
    return ReferenceRepository.get_instance()
