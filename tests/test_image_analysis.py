import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import numpy as np
import pytest
from PIL import Image

from healthrecords.services.image_analysis import (
    ImageAnalysisError,
    MedicalImageAnalysisService,
    categorize_density,
    entropy,
    histogram,
    quality_rating,
)


@pytest.fixture
def service():
    return MedicalImageAnalysisService()


def save_gray(path: Path, array: np.ndarray, **save_kwargs) -> Path:
    Image.fromarray(array.astype(np.uint8), mode="L").save(path, **save_kwargs)
    return path


def test_detect_image_type_from_name_and_description(service):
    assert service.detect_image_type("chest_xray.png") == "xray"
    assert service.detect_image_type("scan.png", "MRI of the knee") == "mri"
    assert service.detect_image_type("panoramic.jpg") == "dental"
    assert service.detect_image_type("photo.jpg", "full body scan") == "ct"
    assert service.detect_image_type("photo.jpg") == "general"


def test_quality_helpers():
    assert quality_rating(0.9) == "excellent"
    assert quality_rating(0.75) == "good"
    assert quality_rating(0.6) == "acceptable"
    assert quality_rating(0.35) == "poor"
    assert quality_rating(0.1) == "unusable"

    assert categorize_density(-1200) == "air"
    assert categorize_density(0) == "soft_tissue"
    assert categorize_density(500) == "bone_cortical"

    assert MedicalImageAnalysisService.quality_score(128, 50, 1.0, 0) == pytest.approx(1.0)


def test_entropy_of_two_level_histogram():
    gray = np.array([[0, 255], [0, 255]], dtype=np.float64)

    assert entropy(histogram(gray)) == pytest.approx(1.0)


def test_uniform_image_is_flagged_for_enhancement(service, tmp_path):
    path = save_gray(tmp_path / "flat.png", np.full((64, 64), 128))

    result = service.analyze_image(str(path), filename="flat.png")

    assert result["imageType"] == "general"
    assert result["metadata"]["width"] == 64
    assert result["metadata"]["format"] == "png"
    assert result["metadata"]["channels"] == 1
    quality = result["qualityMetrics"]
    assert quality["brightness"]["assessment"] == "optimal"
    assert quality["contrast"]["assessment"] == "low"
    assert quality["overallQuality"]["score"] == pytest.approx(0.35)
    assert quality["overallQuality"]["rating"] == "poor"
    numerical = result["numericalMetrics"]
    assert numerical["meanIntensity"] == pytest.approx(128)
    assert numerical["entropy"] == pytest.approx(0.0)
    assert numerical["densityMetrics"] == {}
    assert result["booleanMetrics"]["requiresEnhancement"] is True
    assert result["booleanMetrics"]["isColorImage"] is False
    assert {"type": "quality", "severity": "low", "description": "Image quality could be improved"} in result[
        "clinicalFlags"
    ]
    assert result["confidenceScore"] == pytest.approx(0.35 * 0.9)
    assert result["aiAnalysis"] is None


def test_asymmetric_xray_measurements(service, tmp_path):
    array = np.zeros((40, 80))
    array[:, 40:] = 255
    path = save_gray(tmp_path / "xray.png", array, dpi=(72, 72))

    result = service.analyze_image(str(path), filename="chest_xray.png")

    assert result["imageType"] == "xray"
    booleans = result["booleanMetrics"]
    assert booleans["hasAsymmetry"] is True
    assert booleans["hasCompleteView"] is False
    assert "hasAbnormalDensity" in booleans
    assert any(flag["type"] == "asymmetry" for flag in result["clinicalFlags"])

    lungs = result["measurements"]["lungFieldArea"]
    assert lungs == {"left": 40 * 40, "right": 0, "unit": "pixels"}
    dims = result["measurements"]["physicalDimensions"]
    assert dims["width"] == pytest.approx(80 / 72, abs=0.01)
    assert dims["unit"] == "inches"
    assert result["numericalMetrics"]["densityMetrics"]["densityCategory"] in {
        "air",
        "lung",
        "fat",
        "soft_tissue",
        "bone_cancellous",
        "bone_cortical",
    }


def test_explicit_image_type_overrides_detection(service, tmp_path):
    path = save_gray(tmp_path / "image.png", np.full((10, 30), 90))

    result = service.analyze_image(str(path), filename="chest_xray.png", image_type="dental")

    assert result["imageType"] == "dental"
    assert result["booleanMetrics"]["showsAllTeeth"] is True


def test_color_image(service, tmp_path):
    rgb = np.zeros((20, 20, 3), dtype=np.uint8)
    rgb[:, :, 0] = 200
    path = tmp_path / "photo.png"
    Image.fromarray(rgb, mode="RGB").save(path)

    result = service.analyze_image(str(path))

    assert result["metadata"]["channels"] == 3
    assert result["booleanMetrics"]["isColorImage"] is True


def test_undecodable_file_raises(service, tmp_path):
    path = tmp_path / "broken.png"
    path.write_bytes(b"not really an image")

    with pytest.raises(ImageAnalysisError):
        service.analyze_image(str(path))


def test_oversized_image_raises(service, tmp_path, monkeypatch):
    path = save_gray(tmp_path / "huge.png", np.full((64, 64), 100))
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)

    with pytest.raises(ImageAnalysisError):
        service.analyze_image(str(path))
