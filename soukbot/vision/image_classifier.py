"""
Product-type detection from an uploaded image.

Backends are tried in rank order; the first successful analysis wins.
Each backend reports success or failure as an ``ImageAnalysis`` value:
- LabelDetectionBackend: an external label detector (vision API) whose
  labels are mapped to canonical categories
- MetadataHintBackend: category hints in the file name or caption

A backend that is not configured reports ``available() == False`` and is
skipped.
"""
import asyncio
import base64
import binascii
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, Union

from soukbot.interview.slot_extractor import CANONICAL_CATEGORIES, extract_product_type
from soukbot.utils.logger import get_logger

logger = get_logger("vision.image_classifier")

DEFAULT_PRODUCT_TYPE = "accessoires"
DEFAULT_MAPPED_CONFIDENCE = 0.3

LABEL_MAPPINGS: Dict[str, List[str]] = {
    "vêtements": ["clothing", "shirt", "dress", "pants", "jacket", "coat", "sweater", "blouse", "skirt", "jeans"],
    "chaussures": ["shoe", "boot", "sneaker", "sandal", "heel", "footwear"],
    "électronique": ["electronics", "computer", "laptop", "tablet", "monitor", "keyboard", "mouse"],
    "smartphones": ["phone", "smartphone", "mobile", "iphone", "android"],
    "électroménager": ["appliance", "refrigerator", "washing machine", "microwave", "oven", "dishwasher"],
    "accessoires": ["bag", "purse", "wallet", "belt", "hat", "cap", "scarf", "gloves"],
    "bijoux": ["jewelry", "ring", "necklace", "bracelet", "earring", "watch"],
    "montres": ["watch", "clock", "timepiece"],
    "cosmétiques": ["cosmetics", "makeup", "lipstick", "foundation", "mascara"],
    "parfums": ["perfume", "fragrance", "cologne"],
    "sport": ["sports", "ball", "equipment", "fitness", "gym", "exercise"],
    "jouets": ["toy", "doll", "game", "puzzle", "lego", "action figure"],
    "livres": ["book", "novel", "magazine", "publication"],
    "automobile": ["car", "vehicle", "automotive", "tire", "wheel"],
    "maison": ["furniture", "chair", "table", "sofa", "bed", "lamp"],
    "jardin": ["plant", "flower", "garden", "pot", "watering can"],
    "décoration": ["decoration", "vase", "picture", "frame", "candle"],
}

# English hints seen in file names, checked after the French categories.
FILENAME_HINTS: List[Tuple[Tuple[str, ...], str]] = [
    (("phone", "mobile"), "smartphones"),
    (("shoe", "boot"), "chaussures"),
    (("shirt", "dress"), "vêtements"),
]

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


@dataclass(frozen=True)
class ImageUpload:
    data: bytes
    filename: Optional[str] = None
    caption: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Union[bytes, str], filename: Optional[str] = None,
                     caption: Optional[str] = None) -> "ImageUpload":
        """Accept raw bytes or a base64 string (optionally a data URL)."""
        if isinstance(payload, str):
            try:
                data = base64.b64decode(_DATA_URL_PREFIX.sub("", payload), validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f"Unsupported image format: {e}") from e
        else:
            data = bytes(payload)
        return cls(data=data, filename=filename, caption=caption)


@dataclass(frozen=True)
class DetectedLabel:
    description: str
    score: float


@dataclass
class ImageAnalysis:
    success: bool
    product_type: Optional[str] = None
    confidence: float = 0.0
    detected_objects: List[DetectedLabel] = field(default_factory=list)
    method: Optional[str] = None
    error: Optional[str] = None


class LabelDetector(Protocol):
    async def detect_labels(self, image: bytes) -> List[DetectedLabel]: ...


class ImageClassifierBackend(Protocol):
    name: str

    def available(self) -> bool: ...

    async def classify(self, image: ImageUpload) -> ImageAnalysis: ...


def map_labels_to_product_type(labels: Sequence[DetectedLabel]) -> Tuple[str, float]:
    """Best (category, score) over all label/keyword hits; a hit scores 0.8 x the label score."""
    best_type, best_score = DEFAULT_PRODUCT_TYPE, DEFAULT_MAPPED_CONFIDENCE
    for product_type, keywords in LABEL_MAPPINGS.items():
        for label in labels:
            text = label.description.lower()
            if any(keyword in text for keyword in keywords):
                score = label.score * 0.8
                if score > best_score:
                    best_type, best_score = product_type, score
    return best_type, best_score


class LabelDetectionBackend:
    name = "label_detection"

    def __init__(self, detector: Optional[LabelDetector] = None):
        self.detector = detector

    def available(self) -> bool:
        return self.detector is not None

    async def classify(self, image: ImageUpload) -> ImageAnalysis:
        try:
            labels = list(await self.detector.detect_labels(image.data))
        except Exception as e:
            logger.error(f"Label detection failed: {e}")
            return ImageAnalysis(success=False, method=self.name, error=str(e))
        if not labels:
            return ImageAnalysis(success=False, method=self.name, error="no label detected")

        product_type, mapped = map_labels_to_product_type(labels)
        top = labels[:3]
        mean_score = sum(label.score for label in top) / len(top)
        return ImageAnalysis(
            success=True,
            product_type=product_type,
            confidence=min(mean_score * mapped, 1.0),
            detected_objects=labels[:5],
            method=self.name,
        )


class MetadataHintBackend:
    """Reads the category from the file name or caption sent with the image."""

    name = "metadata_hints"

    def available(self) -> bool:
        return True

    async def classify(self, image: ImageUpload) -> ImageAnalysis:
        text = " ".join(part for part in (image.filename, image.caption) if part).lower()
        if not text:
            return ImageAnalysis(success=False, method=self.name, error="no metadata")

        product_type, confidence = None, 0.0
        for category in CANONICAL_CATEGORIES:
            if category in text:
                product_type, confidence = category, 0.8
                break
        if product_type is None:
            keyword_match = extract_product_type(text)
            if keyword_match:
                product_type, confidence = keyword_match, 0.7
        for hints, category in FILENAME_HINTS:
            if any(hint in text for hint in hints):
                product_type, confidence = category, 0.85
                break

        if product_type is None:
            return ImageAnalysis(success=False, method=self.name, error="no category hint")
        return ImageAnalysis(
            success=True,
            product_type=product_type,
            confidence=confidence,
            detected_objects=[DetectedLabel(product_type, confidence)],
            method=self.name,
        )


class ImageClassifierChain:
    """Tries each available backend in order and returns the first success."""

    def __init__(self, backends: Sequence[ImageClassifierBackend], timeout: float = 10.0):
        self.backends = list(backends)
        self.timeout = timeout

    async def classify(self, image: ImageUpload) -> ImageAnalysis:
        errors = []
        for backend in self.backends:
            if not backend.available():
                continue
            try:
                result = await asyncio.wait_for(backend.classify(image), self.timeout)
            except asyncio.TimeoutError:
                result = ImageAnalysis(success=False, method=backend.name, error=f"timed out after {self.timeout}s")
            if result.success:
                logger.info(
                    f"Image classified by {backend.name}: {result.product_type} ({result.confidence:.2f})"
                )
                return result
            errors.append(f"{backend.name}: {result.error}")

        logger.warning(f"No backend could classify the image: {errors}")
        return ImageAnalysis(success=False, error="; ".join(errors) or "no backend available")
