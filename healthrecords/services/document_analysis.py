"""
Medical document analysis.

Extracts text from stored records, detects the kind of document from its
wording and asks the LLM for a structured JSON extraction. When no LLM is
configured (or the call fails) a canned analysis for the detected type is
returned instead so the rest of the pipeline keeps working.
"""

import copy
import json
import re
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Optional

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..utils.config import settings
from ..utils.logging import get_logger, monitor_latency
from .llm_service import LLMUnavailableError, llm_service

logger = get_logger(__name__)

DOCUMENT_PATTERNS = {
    "xray": re.compile(r"x-ray|radiograph|imaging|radiology|chest|spine|bone|fracture|joint", re.I),
    "lab": re.compile(
        r"lab|blood|urine|glucose|cholesterol|hemoglobin|white blood cell|platelet|results|reference range",
        re.I,
    ),
    "prescription": re.compile(
        r"rx|prescription|medication|dosage|refill|pharmacy|prescrib|dispense|sig:", re.I
    ),
    "discharge": re.compile(r"discharge|admission|hospital|emergency|diagnosis|treatment|follow-up", re.I),
    "dental": re.compile(r"dental|tooth|teeth|cavity|crown|filling|periodontal|orthodont", re.I),
}

DOCUMENT_TYPES = tuple(DOCUMENT_PATTERNS) + ("general",)

_BASE_PROMPT = (
    "You are a medical data extraction specialist. Analyze the following medical "
    "document and extract key information in a structured JSON format. Be precise "
    "and include only information explicitly stated in the document."
)

_PROMPT_SPECS: Dict[str, Dict[str, Any]] = {
    "xray": {
        "title": "X-Ray/Imaging Report",
        "instructions": [
            "Body part examined",
            "Imaging technique used",
            "Key findings (list each finding)",
            "Impressions/conclusions",
            "Recommendations",
            "Comparison to prior studies (if mentioned)",
            "Provider name and date",
        ],
        "schema": {
            "documentType": "xray",
            "bodyPart": "string or null",
            "technique": "string or null",
            "findings": ["array of findings"],
            "impression": "string or null",
            "recommendations": "string or null",
            "comparison": "string or null",
            "provider": "string or null",
            "date": "string or null",
            "summary": "2-3 sentence summary for patient",
        },
    },
    "lab": {
        "title": "Laboratory Results",
        "instructions": [
            "All test names and their values",
            "Reference ranges for each test",
            "Abnormal results (marked as high/low)",
            "Collection date and time",
            "Provider who ordered the tests",
            "Lab facility name",
        ],
        "schema": {
            "documentType": "lab",
            "tests": [
                {
                    "name": "test name",
                    "value": "result value",
                    "unit": "unit of measurement",
                    "referenceRange": "normal range",
                    "flag": "H/L/normal or null",
                }
            ],
            "abnormalResults": ["list of abnormal findings"],
            "collectionDate": "string or null",
            "orderingProvider": "string or null",
            "labFacility": "string or null",
            "summary": "2-3 sentence summary highlighting abnormal results",
        },
    },
    "prescription": {
        "title": "Prescription",
        "instructions": [
            "Medication names (brand and generic if available)",
            "Dosage and strength",
            "Frequency and route of administration",
            "Quantity and refills",
            "Prescribing provider",
            "Pharmacy information",
            "Special instructions",
        ],
        "schema": {
            "documentType": "prescription",
            "medications": [
                {
                    "name": "medication name",
                    "genericName": "generic name or null",
                    "dosage": "strength and form",
                    "frequency": "how often to take",
                    "route": "oral/topical/injection/etc",
                    "quantity": "amount prescribed",
                    "refills": "number of refills",
                    "instructions": "special instructions or null",
                }
            ],
            "prescriber": "provider name",
            "prescriberDEA": "DEA number if present",
            "pharmacy": "pharmacy name or null",
            "date": "prescription date",
            "summary": "Brief summary of medications prescribed",
        },
    },
    "discharge": {
        "title": "Discharge Summary",
        "instructions": [
            "Admission and discharge dates",
            "Primary and secondary diagnoses",
            "Procedures performed",
            "Medications at discharge",
            "Follow-up instructions",
            "Activity restrictions",
            "Warning signs to watch for",
        ],
        "schema": {
            "documentType": "discharge",
            "admissionDate": "string or null",
            "dischargeDate": "string or null",
            "primaryDiagnosis": "main diagnosis",
            "secondaryDiagnoses": ["list of other diagnoses"],
            "procedures": ["procedures performed"],
            "dischargeMedications": ["list of medications"],
            "followUp": "follow-up instructions",
            "restrictions": "activity restrictions or null",
            "warningSigns": ["symptoms requiring immediate care"],
            "provider": "attending physician",
            "summary": "Brief discharge summary for patient",
        },
    },
    "dental": {
        "title": "Dental Record",
        "instructions": [
            "Procedures performed",
            "Teeth involved (tooth numbers)",
            "Diagnosis/findings",
            "Treatment plan",
            "Next appointment recommendations",
            "Provider and practice name",
        ],
        "schema": {
            "documentType": "dental",
            "procedures": ["list of procedures"],
            "teethInvolved": ["tooth numbers or descriptions"],
            "diagnosis": "dental diagnosis",
            "treatmentPlan": "recommended treatment",
            "nextVisit": "next appointment recommendation",
            "provider": "doctor name",
            "practice": "dental practice name",
            "date": "visit date",
            "summary": "Brief summary of dental visit",
        },
    },
    "general": {
        "title": "General Medical Document",
        "instructions": [
            "Patient information (if present)",
            "Provider information",
            "Date of service",
            "Chief complaint or reason for visit",
            "Diagnosis or findings",
            "Treatment or recommendations",
            "Follow-up instructions",
        ],
        "schema": {
            "documentType": "general",
            "provider": "provider name or null",
            "facility": "facility name or null",
            "date": "service date or null",
            "chiefComplaint": "reason for visit or null",
            "diagnosis": "diagnosis or findings",
            "treatment": "treatment provided or recommended",
            "followUp": "follow-up instructions or null",
            "medications": ["list of medications mentioned"],
            "summary": "2-3 sentence summary of the document",
        },
    },
}


class AnalysisError(RuntimeError):
    """Raised when a document cannot be analysed."""


def detect_document_type(text: str) -> str:
    """Pick the document type whose keywords occur most often; ``general`` on no match."""

    best_type = "general"
    best_score = 0
    for doc_type, pattern in DOCUMENT_PATTERNS.items():
        score = len(pattern.findall(text))
        if score > best_score:
            best_type, best_score = doc_type, score
    return best_type


def build_analysis_prompt(document_type: str, text: str) -> str:
    """Render the extraction prompt for ``document_type``."""

    spec = _PROMPT_SPECS.get(document_type, _PROMPT_SPECS["general"])
    instructions = "\n".join(f"{index}. {item}" for index, item in enumerate(spec["instructions"], 1))
    return (
        f"{_BASE_PROMPT}\n\n"
        f"Document Type: {spec['title']}\n\n"
        f"Extract the following information:\n{instructions}\n\n"
        f"Medical Document Text:\n{text}\n\n"
        f"Return a JSON object with these exact keys:\n{json.dumps(spec['schema'], indent=2)}"
    )


def extract_pdf_text(file_path: str) -> Dict[str, Any]:
    """Return ``{"text", "pages", "info"}`` for a PDF file."""

    try:
        reader = PdfReader(file_path)
        text = "\n".join(page.extract_text() or "" for page in reader.pages)
        info = {}
        if reader.metadata:
            info = {key.lstrip("/"): str(value) for key, value in reader.metadata.items()}
        return {"text": text, "pages": len(reader.pages), "info": info}
    except (OSError, PdfReadError) as e:
        logger.error(f"PDF extraction error: {e}")
        raise AnalysisError("Failed to extract text from PDF") from e


def extract_json_object(content: str) -> Optional[Dict[str, Any]]:
    """Pull the outermost JSON object out of an LLM reply."""

    json_start = content.find("{")
    json_end = content.rfind("}")
    if json_start == -1 or json_end == -1:
        return None
    try:
        parsed = json.loads(content[json_start : json_end + 1])
    except json.JSONDecodeError as exc:
        logger.error(f"Failed to decode LLM JSON payload: {exc}")
        return None
    return parsed if isinstance(parsed, dict) else None


def calculate_confidence(analysis: Optional[Dict[str, Any]]) -> float:
    """Confidence from field completeness, ignoring ``documentType`` and ``summary``."""

    if not analysis or analysis.get("parseError"):
        return 0.3

    filled = 0
    total = 0
    for key, value in analysis.items():
        if key in ("documentType", "summary"):
            continue
        total += 1
        if isinstance(value, str):
            filled += bool(value.strip())
        elif isinstance(value, (list, dict)):
            filled += bool(value)

    base = filled / total if total else 0
    return max(0.5, min(1.0, base + 0.2))


def simulated_analysis(document_type: str) -> Dict[str, Any]:
    """Canned analysis used when the LLM is not reachable."""

    today = date.today().isoformat()
    analyses = {
        "xray": {
            "documentType": "xray",
            "bodyPart": "Chest",
            "technique": "PA and lateral views",
            "findings": [
                "Clear lung fields bilaterally",
                "Normal cardiac silhouette",
                "No acute osseous abnormalities",
            ],
            "impression": "No acute cardiopulmonary process",
            "recommendations": "Clinical correlation recommended",
            "comparison": "No prior studies available",
            "provider": "Dr. Smith, Radiologist",
            "date": today,
            "summary": "Chest X-ray shows normal findings with clear lungs and normal heart size. "
            "No acute issues identified.",
        },
        "lab": {
            "documentType": "lab",
            "tests": [
                {"name": "Glucose", "value": "95", "unit": "mg/dL", "referenceRange": "70-100", "flag": "normal"},
                {"name": "Hemoglobin", "value": "14.5", "unit": "g/dL", "referenceRange": "13.5-17.5", "flag": "normal"},
                {"name": "White Blood Cell", "value": "7.2", "unit": "K/uL", "referenceRange": "4.5-11.0", "flag": "normal"},
                {"name": "Platelets", "value": "250", "unit": "K/uL", "referenceRange": "150-400", "flag": "normal"},
            ],
            "abnormalResults": [],
            "collectionDate": today,
            "orderingProvider": "Dr. Johnson",
            "labFacility": "Quest Diagnostics",
            "summary": "All lab results are within normal ranges. No abnormal findings.",
        },
        "prescription": {
            "documentType": "prescription",
            "medications": [
                {
                    "name": "Amoxicillin",
                    "dosage": "500mg",
                    "frequency": "Three times daily",
                    "duration": "10 days",
                    "quantity": "30 capsules",
                }
            ],
            "prescriber": "Dr. Wilson, MD",
            "date": today,
            "pharmacy": "CVS Pharmacy",
            "refills": "0",
            "instructions": "Take with food. Complete entire course.",
            "summary": "Prescription for antibiotic treatment. Take as directed for full course.",
        },
        "discharge": {
            "documentType": "discharge",
            "admissionDate": today,
            "dischargeDate": today,
            "primaryDiagnosis": "Observation, resolved",
            "secondaryDiagnoses": [],
            "procedures": [],
            "dischargeMedications": [],
            "followUp": "Follow up with primary care in 1-2 weeks",
            "restrictions": None,
            "warningSigns": ["Fever above 101F", "Worsening pain"],
            "provider": "Hospitalist",
            "summary": "Patient discharged in stable condition with routine follow-up.",
        },
        "dental": {
            "documentType": "dental",
            "procedures": ["Comprehensive oral examination", "Dental cleaning", "Fluoride treatment"],
            "teethInvolved": ["All teeth examined"],
            "diagnosis": "Healthy dentition with minor plaque buildup",
            "treatmentPlan": "Regular cleanings every 6 months",
            "nextVisit": "Schedule in 6 months for routine cleaning",
            "provider": "Dr. Davis, DDS",
            "practice": "Smile Dental Care",
            "date": today,
            "summary": "Routine dental visit completed with cleaning. Overall oral health is good.",
        },
        "general": {
            "documentType": "general",
            "provider": "Healthcare Provider",
            "facility": "Medical Center",
            "date": today,
            "chiefComplaint": "Routine checkup",
            "diagnosis": "Patient in good health",
            "treatment": "Continue current health maintenance",
            "followUp": "Annual checkup in one year",
            "medications": [],
            "summary": "Medical document processed successfully. Patient appears to be in good overall health.",
        },
    }
    analysis = copy.deepcopy(analyses.get(document_type, analyses["general"]))
    analysis["isSimulated"] = True
    analysis["simulationNote"] = "Demo analysis - API key required for real analysis"
    return analysis


class DocumentAnalysisService:
    """Orchestrates text extraction, type detection and LLM extraction."""

    def __init__(self, llm_client=llm_service):
        self._llm_client = llm_client

    def read_text(self, file_path: str, file_type: str) -> Dict[str, Any]:
        """Return the document text and metadata for a stored file."""

        if file_type == "pdf":
            pdf_data = extract_pdf_text(file_path)
            return {"text": pdf_data["text"], "metadata": {"pages": pdf_data["pages"], "info": pdf_data["info"]}}
        if file_type == "image":
            raise AnalysisError("Images are analysed with the image analysis service")

        try:
            text = Path(file_path).read_text(encoding="utf-8", errors="ignore")
        except OSError as e:
            logger.error(f"Failed to read document {file_path}: {e}")
            raise AnalysisError("Failed to read document") from e
        return {"text": text, "metadata": {}}

    @monitor_latency("analysis_document", "document_analysis")
    async def analyze(self, file_path: str, file_type: str = "pdf", refresh: bool = False) -> Dict[str, Any]:
        """
        Analyse a stored document.

        ``refresh`` asks the LLM again instead of reusing a cached reply.

        Returns a result with ``documentType``, ``analysis``, ``confidence``,
        ``metadata``, ``model``, ``isSimulated`` and ``timestamp``.

        Raises:
            AnalysisError: analysis disabled, or the file cannot be read
        """
        if not settings.enable_ai_analysis:
            raise AnalysisError("AI analysis is disabled")

        extracted = self.read_text(file_path, file_type)
        document_text = extracted["text"]
        document_type = detect_document_type(document_text)
        prompt = build_analysis_prompt(document_type, document_text)

        is_simulated = False
        model = getattr(self._llm_client, "model", settings.llm_model)
        try:
            response = await self._llm_client.complete(
                [{"role": "user", "content": prompt}], refresh=refresh
            )
            content = response.get("content", "")
            model = response.get("model", model)
            analysis = extract_json_object(content)
            if analysis is None:
                logger.warning("LLM response missing JSON body, keeping raw text")
                analysis = {"documentType": document_type, "rawAnalysis": content, "parseError": True}
        except LLMUnavailableError as e:
            logger.info(f"LLM unavailable ({e}), falling back to simulated analysis")
            analysis = simulated_analysis(document_type)
            is_simulated = True

        return {
            "success": True,
            "documentType": document_type,
            "analysis": analysis,
            "confidence": 0.7 if is_simulated else calculate_confidence(analysis),
            "metadata": extracted["metadata"],
            "model": "simulation" if is_simulated else model,
            "isSimulated": is_simulated,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }

    @monitor_latency("analysis_custom_prompt", "document_analysis")
    async def reanalyze_with_custom_prompt(
        self, file_path: str, custom_prompt: str, file_type: str = "pdf"
    ) -> Dict[str, Any]:
        """Run a caller-supplied prompt over the document text."""
        if not settings.enable_ai_analysis:
            raise AnalysisError("AI analysis is disabled")

        document_text = self.read_text(file_path, file_type)["text"]
        document_type = detect_document_type(document_text)
        full_prompt = (
            f"{custom_prompt}\n\nDocument Text:\n{document_text}\n\n"
            "Please provide a structured analysis in JSON format."
        )
        try:
            response = await self._llm_client.complete([{"role": "user", "content": full_prompt}])
        except LLMUnavailableError as e:
            raise AnalysisError(f"Custom analysis unavailable: {e}") from e

        content = response.get("content", "")
        analysis = extract_json_object(content) or {"rawAnalysis": content}
        analysis.setdefault("documentType", document_type)
        analysis["customPrompt"] = custom_prompt

        return {
            "success": True,
            "documentType": document_type,
            "analysis": analysis,
            "confidence": calculate_confidence(analysis),
            "metadata": {},
            "model": response.get("model", settings.llm_model),
            "isSimulated": False,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }


document_analysis_service = DocumentAnalysisService()
