import time

import pytest

from clearout.engines.identify.detectors import barcode as barcode_module
from clearout.engines.identify.detectors.barcode import (
    BarcodeDetector,
    codes_from_filenames,
    map_barcode_to_category,
)
from clearout.engines.identify.preprocess import prepare_images
from clearout.engines.identify.schemas import IdentifyOptionsDTO, StageOutcome


class RecordingDecoder:
    """Finds nothing until the `hit_on`-th call, then returns `found`."""

    def __init__(self, found, hit_on=1):
        self.found = found
        self.hit_on = hit_on
        self.calls = 0

    def __call__(self, img):
        self.calls += 1
        return self.found if self.calls >= self.hit_on else []


@pytest.mark.asyncio
async def test_tries_rotations_until_a_code_reads(png_bytes):
    decoder = RecordingDecoder([("EAN_13", "9780306406157")], hit_on=3)
    detector = BarcodeDetector(decoder=decoder)

    evidence = await detector.extract(prepare_images([png_bytes]), IdentifyOptionsDTO(), 1.0)

    assert evidence.codes == ("EAN_13:9780306406157",)
    assert decoder.calls == 3


@pytest.mark.asyncio
async def test_codes_deduplicated_across_images(png_bytes):
    decoder = RecordingDecoder([("QR_CODE", "https://example.com"), ("QR_CODE", "https://example.com")])
    detector = BarcodeDetector(decoder=decoder)

    evidence = await detector.extract(prepare_images([png_bytes, png_bytes]), IdentifyOptionsDTO(), 1.0)

    assert evidence.codes == ("QR_CODE:https://example.com",)


@pytest.mark.asyncio
async def test_undecodable_images_are_skipped():
    decoder = RecordingDecoder([("EAN_13", "1")])
    detector = BarcodeDetector(decoder=decoder)

    evidence = await detector.extract(prepare_images([b"not an image"]), IdentifyOptionsDTO(), 1.0)

    assert evidence.codes == ()
    assert decoder.calls == 0


@pytest.mark.asyncio
async def test_filename_fallback_requires_opt_in(png_bytes):
    detector = BarcodeDetector(decoder=RecordingDecoder([], hit_on=99))
    images = prepare_images([png_bytes])

    gated = await detector.extract(images, IdentifyOptionsDTO(image_names=["book_9780306406157.jpg"]), 1.0)
    allowed = await detector.extract(
        images,
        IdentifyOptionsDTO(image_names=["book_9780306406157.jpg"], allow_filename_text=True),
        1.0,
    )

    assert gated.codes == ()
    assert allowed.codes == ("FILENAME:9780306406157",)


@pytest.mark.asyncio
async def test_filename_fallback_not_used_when_a_code_decodes(png_bytes):
    detector = BarcodeDetector(decoder=RecordingDecoder([("UPC_A", "012345678905")]))
    options = IdentifyOptionsDTO(image_names=["9780306406157.jpg"], allow_filename_text=True)

    evidence = await detector.extract(prepare_images([png_bytes]), options, 1.0)

    assert evidence.codes == ("UPC_A:012345678905",)


@pytest.mark.asyncio
async def test_decoder_failure_is_a_stage_error(png_bytes):
    def crashing(img):
        raise RuntimeError("zbar segfault")

    evidence, outcome = await BarcodeDetector(decoder=crashing).run(prepare_images([png_bytes]), IdentifyOptionsDTO(), 1.0)

    assert outcome == StageOutcome.ERROR
    assert evidence.codes == ()


@pytest.mark.asyncio
async def test_slow_decoder_setup_respects_the_stage_deadline(monkeypatch, png_bytes):
    def slow_setup():
        time.sleep(0.5)
        return RecordingDecoder([("EAN_13", "9780306406157")])

    monkeypatch.setattr(barcode_module, "pyzbar_decoder", slow_setup)

    start = time.perf_counter()
    evidence, outcome = await BarcodeDetector().run(prepare_images([png_bytes]), IdentifyOptionsDTO(), 0.05)
    elapsed = time.perf_counter() - start

    assert outcome == StageOutcome.TIMEOUT
    assert evidence.codes == ()
    assert elapsed < 0.3


@pytest.mark.asyncio
async def test_missing_pyzbar_is_looked_up_once(monkeypatch, png_bytes):
    attempts = []

    def missing():
        attempts.append(1)
        return None

    monkeypatch.setattr(barcode_module, "pyzbar_decoder", missing)
    detector = BarcodeDetector()
    images = prepare_images([png_bytes])

    await detector.extract(images, IdentifyOptionsDTO(), 1.0)
    evidence = await detector.extract(images, IdentifyOptionsDTO(), 1.0)

    assert evidence.codes == ()
    assert len(attempts) == 1


def test_codes_from_filenames():
    names = ["isbn-0306406152.png", "IMG_0001.jpg", "receipt 012345678905.jpg"]
    assert codes_from_filenames(names) == ["FILENAME:isbn-0306406152", "FILENAME:012345678905"]


@pytest.mark.parametrize("code,expected", [
    ("EAN_13:9780306406157", "Media > Books"),
    ("FILENAME:ISBN-978-0-306-40615-7", "Media > Books"),
    ("030640615X", "Media > Books"),
    ("EAN_13:0012345678905", None),
    ("UPC_A:012345678905", None),
    ("QR_CODE:", None),
])
def test_map_barcode_to_category(code, expected):
    assert map_barcode_to_category(code) == expected
