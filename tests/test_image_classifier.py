"""Tests for image product-type detection."""

import asyncio
import base64

import pytest

from soukbot.vision.image_classifier import (
    DetectedLabel,
    ImageAnalysis,
    ImageClassifierChain,
    ImageUpload,
    LabelDetectionBackend,
    MetadataHintBackend,
    map_labels_to_product_type,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


class FakeDetector:
    def __init__(self, labels):
        self.labels = labels
        self.calls = 0

    async def detect_labels(self, image):
        self.calls += 1
        return self.labels


class BrokenDetector:
    async def detect_labels(self, image):
        raise RuntimeError("vision API quota exceeded")


class HangingBackend:
    name = "hanging"

    def available(self):
        return True

    async def classify(self, image):
        await asyncio.sleep(1.0)


# ── Upload decoding ──────────────────────────────────────────────────────

class TestImageUpload:
    def test_bytes(self):
        assert ImageUpload.from_payload(PNG_BYTES).data == PNG_BYTES

    def test_base64(self):
        encoded = base64.b64encode(PNG_BYTES).decode()
        assert ImageUpload.from_payload(encoded).data == PNG_BYTES

    def test_data_url(self):
        encoded = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
        upload = ImageUpload.from_payload(encoded, filename="robe.png")
        assert upload.data == PNG_BYTES
        assert upload.filename == "robe.png"

    def test_invalid_base64(self):
        with pytest.raises(ValueError):
            ImageUpload.from_payload("not base64 at all!")


# ── Label mapping ────────────────────────────────────────────────────────

class TestMapLabels:
    def test_best_category(self):
        labels = [DetectedLabel("Dress", 0.9), DetectedLabel("Sneaker", 0.95)]
        product_type, score = map_labels_to_product_type(labels)
        assert product_type == "chaussures"
        assert score == pytest.approx(0.76)

    def test_default_when_nothing_maps(self):
        assert map_labels_to_product_type([DetectedLabel("Sky", 0.99)]) == ("accessoires", 0.3)


# ── Backends ─────────────────────────────────────────────────────────────

class TestLabelDetectionBackend:
    def test_unavailable_without_detector(self):
        assert not LabelDetectionBackend().available()

    async def test_success(self):
        labels = [DetectedLabel("Dress", 0.9), DetectedLabel("Clothing", 0.8), DetectedLabel("Fashion", 0.7)]
        analysis = await LabelDetectionBackend(FakeDetector(labels)).classify(ImageUpload(PNG_BYTES))
        assert analysis.success
        assert analysis.product_type == "vêtements"
        assert analysis.confidence == pytest.approx(0.8 * 0.72)
        assert analysis.method == "label_detection"

    async def test_no_labels(self):
        analysis = await LabelDetectionBackend(FakeDetector([])).classify(ImageUpload(PNG_BYTES))
        assert not analysis.success

    async def test_detector_error(self):
        analysis = await LabelDetectionBackend(BrokenDetector()).classify(ImageUpload(PNG_BYTES))
        assert not analysis.success
        assert "quota" in analysis.error


class TestMetadataHintBackend:
    @pytest.mark.parametrize("filename,caption,expected,confidence", [
        ("electromenager.jpg", "mes bijoux", "bijoux", 0.8),
        ("photo.jpg", "un sac en cuir", "accessoires", 0.7),
        ("my-iphone.jpg", None, "smartphones", 0.85),
        ("boots_2024.png", None, "chaussures", 0.85),
    ])
    async def test_hints(self, filename, caption, expected, confidence):
        analysis = await MetadataHintBackend().classify(ImageUpload(PNG_BYTES, filename, caption))
        assert analysis.success
        assert analysis.product_type == expected
        assert analysis.confidence == confidence

    async def test_no_hint(self):
        analysis = await MetadataHintBackend().classify(ImageUpload(PNG_BYTES, "IMG_0042.jpg"))
        assert not analysis.success

    async def test_no_metadata(self):
        analysis = await MetadataHintBackend().classify(ImageUpload(PNG_BYTES))
        assert not analysis.success


# ── Chain ────────────────────────────────────────────────────────────────

class TestImageClassifierChain:
    async def test_first_success_wins(self):
        detector = FakeDetector([DetectedLabel("Shoe", 0.9)])
        chain = ImageClassifierChain([LabelDetectionBackend(detector), MetadataHintBackend()])
        analysis = await chain.classify(ImageUpload(PNG_BYTES, "robe.jpg"))
        assert analysis.product_type == "chaussures"
        assert analysis.method == "label_detection"

    async def test_falls_back_on_failure(self):
        chain = ImageClassifierChain([LabelDetectionBackend(BrokenDetector()), MetadataHintBackend()])
        analysis = await chain.classify(ImageUpload(PNG_BYTES, "robe.jpg"))
        assert analysis.success
        assert analysis.product_type == "vêtements"
        assert analysis.method == "metadata_hints"

    async def test_skips_unavailable_backend(self):
        chain = ImageClassifierChain([LabelDetectionBackend(), MetadataHintBackend()])
        analysis = await chain.classify(ImageUpload(PNG_BYTES, "phone.jpg"))
        assert analysis.method == "metadata_hints"

    async def test_timeout_moves_on(self):
        chain = ImageClassifierChain([HangingBackend(), MetadataHintBackend()], timeout=0.05)
        analysis = await chain.classify(ImageUpload(PNG_BYTES, "phone.jpg"))
        assert analysis.product_type == "smartphones"

    async def test_all_fail(self):
        chain = ImageClassifierChain([LabelDetectionBackend(BrokenDetector()), MetadataHintBackend()])
        analysis = await chain.classify(ImageUpload(PNG_BYTES))
        assert analysis == ImageAnalysis(success=False, error=analysis.error)
        assert "label_detection" in analysis.error
        assert "metadata_hints" in analysis.error

    async def test_no_backend(self):
        analysis = await ImageClassifierChain([]).classify(ImageUpload(PNG_BYTES))
        assert analysis.error == "no backend available"
