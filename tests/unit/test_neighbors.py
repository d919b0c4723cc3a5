import numpy as np
import pytest

from clearout.engines.identify.detectors.neighbors import NeighborDetector, rank_neighbors
from clearout.engines.identify.embeddings import HashEmbedder
from clearout.engines.identify.preprocess import prepare_images
from clearout.engines.identify.repositories import GalleryIndex, InMemoryReferenceData, ReferenceRepository
from clearout.engines.identify.schemas import IdentifyOptionsDTO


def test_hash_embedder_is_deterministic_and_unit_length():
    embedder = HashEmbedder(dim=8)

    a = embedder.embed(bytes(range(20)))
    b = embedder.embed(bytes(range(20)))

    assert np.array_equal(a, b)
    assert np.linalg.norm(a) == pytest.approx(1.0)
    assert not np.any(embedder.embed(b""))
    assert not np.any(embedder.embed(b"\x00\x00"))


def test_hash_embedder_buckets_by_position():
    vec = HashEmbedder(dim=4).embed(bytes([255, 0, 0, 0, 255]))
    # Bytes 0 and 4 both land in bucket 0
    assert vec[0] == pytest.approx(1.0)
    assert vec[1:].tolist() == [0.0, 0.0, 0.0]


def test_rank_neighbors_orders_and_breaks_ties_by_gallery_order():
    vectors = np.array([
        [0.0, 1.0],
        [1.0, 0.0],
        [1.0, 0.0],
        [-1.0, 0.0],
    ])
    gallery = GalleryIndex(["up", "right-a", "right-b", "left"], vectors)

    neighbors = rank_neighbors(np.array([2.0, 0.0]), gallery, top_k=3)

    assert [n.id for n in neighbors] == ["right-a", "right-b", "up"]
    assert [n.score for n in neighbors] == pytest.approx([1.0, 1.0, 0.5])


def test_rank_neighbors_empty_inputs():
    assert rank_neighbors(np.array([1.0, 0.0]), GalleryIndex.empty(2), top_k=5) == []
    gallery = GalleryIndex(["a"], np.array([[1.0, 0.0]]))
    assert rank_neighbors(np.zeros(2), gallery, top_k=5) == []


@pytest.mark.asyncio
async def test_detector_finds_identical_gallery_image(png_bytes):
    gallery = [("mug.png", b"\x10" * 700), ("same.png", png_bytes), ("drill.png", bytes(range(256)) * 3)]
    reference = ReferenceRepository(InMemoryReferenceData(gallery=gallery), embedder=HashEmbedder(dim=64))
    detector = NeighborDetector(reference=reference, top_k=2)

    evidence = await detector.extract(prepare_images([png_bytes]), IdentifyOptionsDTO(), 0.8)

    assert len(evidence.neighbors) == 2
    assert evidence.neighbors[0].id == "same.png"
    assert evidence.neighbors[0].score == pytest.approx(1.0)
    assert evidence.neighbors[0].score >= evidence.neighbors[1].score


@pytest.mark.asyncio
async def test_detector_with_no_images_or_gallery(reference, png_bytes):
    detector = NeighborDetector(reference=reference)

    assert (await detector.extract([], IdentifyOptionsDTO(), 0.8)).neighbors == ()
    assert (await detector.extract(prepare_images([png_bytes]), IdentifyOptionsDTO(), 0.8)).neighbors == ()
