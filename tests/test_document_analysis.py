import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import io
import json

import pytest
from reportlab.pdfgen import canvas

from healthrecords.services.document_analysis import (
    AnalysisError,
    DocumentAnalysisService,
    build_analysis_prompt,
    calculate_confidence,
    detect_document_type,
    extract_json_object,
    extract_pdf_text,
    simulated_analysis,
)
from healthrecords.services.llm_service import LLMUnavailableError
from healthrecords.utils.config import settings


class FakeLLM:
    model = "fake-model"

    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    async def complete(self, messages, max_tokens=None, temperature=None, refresh=False):
        self.calls.append(messages)
        if self.error:
            raise self.error
        return {"content": self.content, "model": self.model, "usage": {}}


def write_pdf(path: Path, lines):
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer)
    y = 800
    for line in lines:
        pdf.drawString(72, y, line)
        y -= 20
    pdf.showPage()
    pdf.save()
    path.write_bytes(buffer.getvalue())


def test_detect_document_type_by_keyword_score():
    assert detect_document_type("Blood glucose and hemoglobin results, reference range") == "lab"
    assert detect_document_type("Rx: amoxicillin dosage, refill at pharmacy") == "prescription"
    assert detect_document_type("Chest x-ray radiograph, no fracture") == "xray"
    assert detect_document_type("Periodontal exam, two teeth with a cavity") == "dental"
    assert detect_document_type("Hello world") == "general"


def test_build_analysis_prompt_contains_text_and_schema():
    prompt = build_analysis_prompt("lab", "Glucose 95 mg/dL")

    assert "Laboratory Results" in prompt
    assert "Glucose 95 mg/dL" in prompt
    assert '"referenceRange"' in prompt


def test_extract_json_object_from_chatty_reply():
    content = 'Here is the analysis:\n{"documentType": "lab", "tests": []}\nLet me know!'

    assert extract_json_object(content) == {"documentType": "lab", "tests": []}
    assert extract_json_object("no json here") is None
    assert extract_json_object("{broken json}") is None


def test_calculate_confidence_from_completeness():
    full = {"documentType": "xray", "summary": "ok", "bodyPart": "Chest", "findings": ["clear"]}
    half = {"bodyPart": "Chest", "impression": "", "findings": [], "provider": "Dr. X"}

    assert calculate_confidence(full) == 1.0
    assert calculate_confidence(half) == pytest.approx(0.7)
    assert calculate_confidence({"documentType": "general"}) == 0.5
    assert calculate_confidence({"parseError": True}) == 0.3
    assert calculate_confidence(None) == 0.3


def test_simulated_analysis_is_marked_and_isolated():
    first = simulated_analysis("lab")
    first["tests"].clear()

    second = simulated_analysis("lab")

    assert second["isSimulated"] is True
    assert len(second["tests"]) == 4
    assert simulated_analysis("unknown")["documentType"] == "general"


def test_extract_pdf_text(tmp_path):
    path = tmp_path / "labs.pdf"
    write_pdf(path, ["Glucose 95 mg/dL", "Hemoglobin 14.5 g/dL"])

    data = extract_pdf_text(str(path))

    assert "Glucose" in data["text"]
    assert data["pages"] == 1


def test_extract_pdf_text_rejects_invalid_files(tmp_path):
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"not a pdf")

    with pytest.raises(AnalysisError):
        extract_pdf_text(str(path))


@pytest.mark.asyncio
async def test_analyze_uses_llm_json(tmp_path):
    path = tmp_path / "labs.txt"
    path.write_text("Lab results: glucose 95, hemoglobin 14.5, reference range normal")
    payload = {
        "documentType": "lab",
        "tests": [{"name": "Glucose", "value": "95"}],
        "abnormalResults": [],
        "collectionDate": "2024-05-01",
        "orderingProvider": "Dr. Lee",
        "labFacility": "",
        "summary": "Normal labs.",
    }
    llm = FakeLLM(content=json.dumps(payload))
    service = DocumentAnalysisService(llm_client=llm)

    result = await service.analyze(str(path), "document")

    assert result["success"] is True
    assert result["documentType"] == "lab"
    assert result["analysis"] == payload
    assert result["isSimulated"] is False
    assert result["model"] == "fake-model"
    assert result["confidence"] == pytest.approx(0.8)
    assert "glucose 95" in llm.calls[0][0]["content"]


@pytest.mark.asyncio
async def test_analyze_keeps_raw_text_on_parse_error(tmp_path):
    path = tmp_path / "note.txt"
    path.write_text("Follow-up after hospital discharge")
    service = DocumentAnalysisService(llm_client=FakeLLM(content="I could not produce JSON"))

    result = await service.analyze(str(path), "document")

    assert result["analysis"]["parseError"] is True
    assert result["analysis"]["rawAnalysis"] == "I could not produce JSON"
    assert result["confidence"] == 0.3


@pytest.mark.asyncio
async def test_analyze_falls_back_to_simulation(tmp_path):
    path = tmp_path / "rx.txt"
    path.write_text("Prescription: amoxicillin dosage 500mg, pharmacy refill")
    service = DocumentAnalysisService(llm_client=FakeLLM(error=LLMUnavailableError("no key")))

    result = await service.analyze(str(path), "document")

    assert result["isSimulated"] is True
    assert result["model"] == "simulation"
    assert result["confidence"] == 0.7
    assert result["analysis"]["documentType"] == "prescription"


@pytest.mark.asyncio
async def test_analyze_disabled(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "enable_ai_analysis", False)
    path = tmp_path / "note.txt"
    path.write_text("anything")
    service = DocumentAnalysisService(llm_client=FakeLLM(content="{}"))

    with pytest.raises(AnalysisError, match="disabled"):
        await service.analyze(str(path), "document")


@pytest.mark.asyncio
async def test_analyze_rejects_images(tmp_path):
    service = DocumentAnalysisService(llm_client=FakeLLM(content="{}"))

    with pytest.raises(AnalysisError):
        await service.analyze(str(tmp_path / "scan.png"), "image")


@pytest.mark.asyncio
async def test_custom_prompt_reanalysis(tmp_path):
    path = tmp_path / "note.txt"
    path.write_text("Discharge summary after hospital admission")
    llm = FakeLLM(content='{"keyPoints": ["rest"]}')
    service = DocumentAnalysisService(llm_client=llm)

    result = await service.reanalyze_with_custom_prompt(str(path), "List the key points", "document")

    assert result["analysis"]["keyPoints"] == ["rest"]
    assert result["analysis"]["customPrompt"] == "List the key points"
    assert result["analysis"]["documentType"] == "discharge"
    assert llm.calls[0][0]["content"].startswith("List the key points")


@pytest.mark.asyncio
async def test_custom_prompt_requires_llm(tmp_path):
    path = tmp_path / "note.txt"
    path.write_text("text")
    service = DocumentAnalysisService(llm_client=FakeLLM(error=LLMUnavailableError("no key")))

    with pytest.raises(AnalysisError, match="unavailable"):
        await service.reanalyze_with_custom_prompt(str(path), "Summarise", "document")
