"""
Visual-Neighbor Detector

Embeds the query images, averages them and ranks the reference gallery
by cosine similarity mapped onto [0, 1].
"""

import asyncio
from typing import List, Optional

import numpy as np

from clearout.core.config import settings
from clearout.engines.identify.detectors.base import Detector
from clearout.engines.identify.preprocess import PreparedImage
from clearout.engines.identify.repositories import GalleryIndex, ReferenceRepository, get_reference_repository
from clearout.engines.identify.schemas import IdentifyOptionsDTO, Neighbor, NeighborEvidence


def rank_neighbors(query: np.ndarray, gallery: GalleryIndex, top_k: int) -> List[Neighbor]:
    """Top `top_k` gallery entries by (cos+1)/2, ties in gallery order."""
    if len(gallery) == 0 or not np.any(query):
        return []
    # Gallery rows are unit length (or zero); normalize the averaged query
    unit = query / np.linalg.norm(query)
    cos = gallery.vectors @ unit
    scores = np.clip((cos + 1.0) / 2.0, 0.0, 1.0)
    order = np.argsort(-scores, kind="stable")[:top_k]
    return [Neighbor(id=gallery.ids[i], score=float(scores[i])) for i in order]


class NeighborDetector(Detector[NeighborEvidence]):
    stage = "clip"

    def __init__(self, reference: Optional[ReferenceRepository] = None, top_k: Optional[int] = None):
        self._reference = reference
        self.top_k = top_k or settings.NEIGHBOR_TOP_K

    @property
    def reference(self) -> ReferenceRepository:
        return self._reference or get_reference_repository()

    def empty(self) -> NeighborEvidence:
        return NeighborEvidence()

    def _search(self, images: List[PreparedImage]) -> List[Neighbor]:
        if not images:
            return []
        reference = self.reference
        gallery = reference.gallery()
        query = reference.embedder.embed_mean([image.data for image in images])
        return rank_neighbors(query, gallery, self.top_k)

    async def extract(
        self,
        images: List[PreparedImage],
        options: IdentifyOptionsDTO,
        timeout_s: float,
    ) -> NeighborEvidence:
        neighbors = await asyncio.to_thread(self._search, images)
        return NeighborEvidence(neighbors=tuple(neighbors))
