"""
Medical image analysis.
Computes quality, intensity and distribution metrics for X-rays, CT/MRI
slices, dental films and other medical images with Pillow and NumPy.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..utils.logging import get_logger, monitor_latency

logger = get_logger(__name__)

ALLOWED_IMAGE_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/tiff",
    "image/bmp",
}

IMAGE_TYPE_PATTERNS = {
    "xray": re.compile(r"x[-_]?ray|radiograph|chest|bone|skeletal", re.I),
    "ct": re.compile(r"ct[-_]?scan|computed[-_]?tomography|cat[-_]?scan", re.I),
    "mri": re.compile(r"mri|magnetic[-_]?resonance", re.I),
    "ultrasound": re.compile(r"ultrasound|sonogram|echo", re.I),
    "mammogram": re.compile(r"mammogram|breast", re.I),
    "dental": re.compile(r"dental|teeth|panoramic|bitewing|periapical", re.I),
    "pet": re.compile(r"pet[-_]?scan|positron", re.I),
    "ekg": re.compile(r"ekg|ecg|electrocardiogram", re.I),
}

IMAGE_TYPES = tuple(IMAGE_TYPE_PATTERNS) + ("general",)

THRESHOLDS = {
    "quality": {"min": 0.7, "optimal": 0.85},
    "contrast": {"min": 0.3, "optimal": 0.5},
    "sharpness": {"min": 0.6, "optimal": 0.8},
}

_EXIF_ORIENTATION = 274


class ImageAnalysisError(RuntimeError):
    """Raised when an image cannot be decoded or analysed."""


def _normalize(value: float, low: float, high: float) -> float:
    return float(max(0.0, min(1.0, (value - low) / (high - low))))


def _laplacian(gray: np.ndarray) -> np.ndarray:
    """3x3 Laplacian (8-neighbour) response, clipped to the 0-255 range."""
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        return np.zeros((1,), dtype=np.float64)
    center = gray[1:-1, 1:-1] * 8
    neighbours = (
        gray[:-2, :-2] + gray[:-2, 1:-1] + gray[:-2, 2:]
        + gray[1:-1, :-2] + gray[1:-1, 2:]
        + gray[2:, :-2] + gray[2:, 1:-1] + gray[2:, 2:]
    )
    return np.clip(center - neighbours, 0, 255)


def histogram(gray: np.ndarray) -> np.ndarray:
    """Normalised 256-bin intensity histogram."""
    counts = np.bincount(gray.astype(np.uint8).ravel(), minlength=256)
    return counts / max(gray.size, 1)


def _central_moment(hist: np.ndarray, power: int) -> float:
    levels = np.arange(hist.size, dtype=np.float64)
    mean = float((levels * hist).sum())
    std = float(np.sqrt((((levels - mean) ** 2) * hist).sum()))
    if std == 0:
        return 0.0
    return float(((((levels - mean) / std) ** power) * hist).sum())


def skewness(hist: np.ndarray) -> float:
    return _central_moment(hist, 3)


def kurtosis(hist: np.ndarray) -> float:
    """Excess kurtosis of the histogram; 0 for a flat (zero variance) image."""
    moment = _central_moment(hist, 4)
    return moment - 3 if moment else 0.0


def entropy(hist: np.ndarray) -> float:
    nonzero = hist[hist > 0]
    return float(-(nonzero * np.log2(nonzero)).sum())


def quality_rating(score: float) -> str:
    if score >= 0.85:
        return "excellent"
    if score >= 0.7:
        return "good"
    if score >= 0.5:
        return "acceptable"
    if score >= 0.3:
        return "poor"
    return "unusable"


def categorize_density(value: float) -> str:
    if value < -1000:
        return "air"
    if value < -500:
        return "lung"
    if value < -100:
        return "fat"
    if value < 40:
        return "soft_tissue"
    if value < 300:
        return "bone_cancellous"
    return "bone_cortical"


class MedicalImageAnalysisService:
    """Pixel-statistics analysis of a single medical image."""

    def detect_image_type(self, filename: str = "", description: str = "") -> str:
        text = f"{filename} {description}".lower()
        for image_type, pattern in IMAGE_TYPE_PATTERNS.items():
            if pattern.search(text):
                return image_type
        if "scan" in text:
            return "ct"
        if "ray" in text:
            return "xray"
        return "general"

    @monitor_latency("analysis_image", "image_analysis")
    def analyze_image(
        self,
        file_path: str,
        filename: str = "",
        description: str = "",
        image_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Analyse an image file.

        Args:
            file_path: Path of the stored image
            filename: Original file name, used for type detection
            description: Free-text description, used for type detection
            image_type: Explicit type; ``None`` or ``"auto"`` detects it

        Raises:
            ImageAnalysisError: the file is not a decodable image
        """
        try:
            with Image.open(file_path) as img:
                img.load()
                image = img.copy()
                fmt = img.format
                exif_orientation = img.getexif().get(_EXIF_ORIENTATION)
                dpi = img.info.get("dpi")
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            logger.error(f"Failed to decode image {file_path}: {e}")
            raise ImageAnalysisError(f"Unable to read image: {e}") from e

        if image_type in (None, "", "auto") or image_type not in IMAGE_TYPES:
            image_type = self.detect_image_type(filename, description)

        bands = image.getbands()
        has_alpha = "A" in bands
        color = image.convert("RGB") if len(bands) >= 3 or image.mode == "P" else image.convert("L")
        pixels = np.asarray(color, dtype=np.float64)
        if pixels.ndim == 2:
            pixels = pixels[:, :, np.newaxis]
        gray = np.asarray(image.convert("L"), dtype=np.float64)
        width, height = image.size
        density = float(dpi[0]) if dpi else None

        quality = self.analyze_quality(pixels, gray)
        numerical = self.extract_numerical_metrics(gray, width, height, image_type)
        booleans = self.boolean_assessments(
            gray, pixels, image_type, quality, numerical, exif_orientation, width, height
        )
        measurements = self.extract_measurements(gray, image_type, width, height, density)

        result = {
            "imageType": image_type,
            "metadata": {
                "width": width,
                "height": height,
                "format": (fmt or "").lower(),
                "channels": len(bands),
                "density": density,
                "hasAlpha": has_alpha,
            },
            "qualityMetrics": quality,
            "numericalMetrics": numerical,
            "booleanMetrics": booleans,
            "measurements": measurements,
            "aiAnalysis": None,
            "clinicalFlags": self.clinical_flags(booleans),
            "confidenceScore": self.confidence_score(quality, numerical),
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }

        logger.info(
            "Image analysis complete",
            extra={
                "extra_fields": {
                    "image_type": image_type,
                    "confidence": result["confidenceScore"],
                    "flags": len(result["clinicalFlags"]),
                }
            },
        )
        return result

    def analyze_quality(self, pixels: np.ndarray, gray: np.ndarray) -> Dict[str, Any]:
        channel_means = pixels.mean(axis=(0, 1))
        channel_stds = pixels.std(axis=(0, 1))

        brightness = float(channel_means.mean())
        contrast = float(channel_stds.mean())
        sharpness = float(min(_laplacian(gray).var() / 1000, 1.0))
        with np.errstate(divide="ignore", invalid="ignore"):
            ratios = np.where(channel_means > 0, channel_stds / channel_means, 0.0)
        noise = float(ratios.mean() * 100)

        score = self.quality_score(brightness, contrast, sharpness, noise)
        return {
            "brightness": {
                "value": brightness,
                "normalized": _normalize(brightness, 0, 255),
                "assessment": "underexposed" if brightness < 50 else "overexposed" if brightness > 200 else "optimal",
            },
            "contrast": {
                "value": contrast,
                "normalized": _normalize(contrast, 0, 100),
                "assessment": "low" if contrast < 20 else "high" if contrast > 60 else "good",
            },
            "sharpness": {
                "value": sharpness,
                "normalized": sharpness,
                "assessment": "blurry" if sharpness < 0.4 else "sharp" if sharpness > 0.7 else "acceptable",
            },
            "noise": {
                "value": noise,
                "normalized": _normalize(noise, 0, 50),
                "assessment": "clean" if noise < 5 else "noisy" if noise > 15 else "moderate",
            },
            "overallQuality": {"score": score, "rating": quality_rating(score)},
        }

    @staticmethod
    def quality_score(brightness: float, contrast: float, sharpness: float, noise: float) -> float:
        """Weighted 0-1 score; brightness is judged on its 0-1 normalised value."""
        level = brightness / 255
        if 0.3 < level < 0.7:
            brightness_score = 1.0
        else:
            brightness_score = max(0.0, 1 - abs(level - 0.5) * 2)

        score = (
            brightness_score * 0.2
            + min(contrast / 50, 1.0) * 0.3
            + sharpness * 0.35
            + max(0.0, 1 - noise / 20) * 0.15
        )
        return float(min(max(score, 0.0), 1.0))

    def extract_numerical_metrics(
        self, gray: np.ndarray, width: int, height: int, image_type: str
    ) -> Dict[str, Any]:
        hist = histogram(gray)
        return {
            "meanIntensity": float(gray.mean()),
            "medianIntensity": float(np.median(gray)),
            "stdDeviation": float(gray.std()),
            "skewness": skewness(hist),
            "kurtosis": kurtosis(hist),
            "entropy": entropy(hist),
            "spatialResolution": {
                "horizontal": width,
                "vertical": height,
                "total": width * height,
                "aspectRatio": round(width / height, 2) if height else None,
            },
            "densityMetrics": self.density_metrics(gray, image_type),
            "roiMetrics": self.roi_metrics(gray),
        }

    def density_metrics(self, gray: np.ndarray, image_type: str) -> Dict[str, Any]:
        if image_type not in ("xray", "ct"):
            return {}
        # Hounsfield-like scale approximated from the 8-bit mean
        mean_density = (float(gray.mean()) - 128) * 8
        return {"meanDensity": mean_density, "densityCategory": categorize_density(mean_density)}

    def roi_metrics(self, gray: np.ndarray) -> Dict[str, Any]:
        height, width = gray.shape
        half = max(int(min(width, height) / 4), 1)
        cy, cx = height // 2, width // 2
        roi = gray[max(cy - half, 0) : cy + half, max(cx - half, 0) : cx + half]
        return {
            "meanIntensity": float(roi.mean()) if roi.size else 0.0,
            "variance": float(roi.var()) if roi.size else 0.0,
            "size": int(roi.size),
        }

    def boolean_assessments(
        self,
        gray: np.ndarray,
        pixels: np.ndarray,
        image_type: str,
        quality: Dict[str, Any],
        numerical: Dict[str, Any],
        exif_orientation: Optional[int],
        width: int,
        height: int,
    ) -> Dict[str, bool]:
        score = quality["overallQuality"]["score"]
        assessments = {
            "isHighQuality": score >= THRESHOLDS["quality"]["optimal"],
            "isAcceptableQuality": score >= THRESHOLDS["quality"]["min"],
            "hasGoodContrast": quality["contrast"]["normalized"] >= THRESHOLDS["contrast"]["optimal"],
            "hasGoodSharpness": quality["sharpness"]["normalized"] >= THRESHOLDS["sharpness"]["optimal"],
            "isColorImage": pixels.shape[2] >= 3,
            "hasAnnotations": bool(_laplacian(gray).var() > 5000),
            "isInverted": image_type == "xray" and float(pixels[:, :, 0].mean()) > 140,
            "isValidOrientation": not (image_type == "xray" and exif_orientation not in (None, 1)),
            "hasCompleteView": image_type != "xray" or (width >= 1000 and height >= 1000),
            "requiresEnhancement": score < 0.7,
        }

        if image_type in ("xray", "ct"):
            assessments["hasAbnormalDensity"] = abs(numerical["skewness"]) > 1.5
            assessments["hasAsymmetry"] = self.has_asymmetry(gray)

        if image_type == "dental":
            assessments["showsAllTeeth"] = bool(height) and width / height > 2

        return {key: bool(value) for key, value in assessments.items()}

    @staticmethod
    def has_asymmetry(gray: np.ndarray, tolerance: float = 0.15) -> bool:
        """Compare the left half with the mirrored right half."""
        width = gray.shape[1]
        half = width // 2
        if half == 0:
            return False
        left = gray[:, :half]
        right = np.fliplr(gray[:, width - half :])
        return float(np.abs(left - right).mean()) / 255 > tolerance

    def extract_measurements(
        self,
        gray: np.ndarray,
        image_type: str,
        width: int,
        height: int,
        density: Optional[float],
    ) -> Dict[str, Any]:
        measurements: Dict[str, Any] = {}
        if density:
            measurements["physicalDimensions"] = {
                "width": round(width / density, 2),
                "height": round(height / density, 2),
                "unit": "inches",
            }

        if image_type == "xray":
            half = gray.shape[1] // 2
            # radiolucent (dark) pixels per side
            dark = gray < 80
            measurements["lungFieldArea"] = {
                "left": int(dark[:, :half].sum()),
                "right": int(dark[:, half:].sum()),
                "unit": "pixels",
            }
        elif image_type in ("ct", "mri"):
            measurements["sliceThickness"] = None
            measurements["fieldOfView"] = (
                {"width": width / density, "height": height / density, "unit": "inches"}
                if density
                else None
            )
        return measurements

    def clinical_flags(self, booleans: Dict[str, bool]) -> List[Dict[str, str]]:
        flags = []
        if booleans.get("hasAbnormalDensity"):
            flags.append({"type": "abnormality", "severity": "moderate", "description": "Abnormal density detected"})
        if booleans.get("hasAsymmetry"):
            flags.append({"type": "asymmetry", "severity": "low", "description": "Asymmetry detected"})
        if booleans.get("requiresEnhancement"):
            flags.append({"type": "quality", "severity": "low", "description": "Image quality could be improved"})
        return flags

    def confidence_score(self, quality: Dict[str, Any], numerical: Dict[str, Any]) -> float:
        confidence = quality["overallQuality"]["score"]
        if numerical["entropy"] < 3:
            confidence *= 0.9
        if abs(numerical["skewness"]) > 2:
            confidence *= 0.95
        return float(min(max(confidence, 0.0), 1.0))


image_analysis_service = MedicalImageAnalysisService()
