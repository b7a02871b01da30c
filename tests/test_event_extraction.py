import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from datetime import date

import pytest

from healthrecords.services.event_extraction import EventExtractionService, priority_rank

TODAY = date(2024, 3, 1)


@pytest.fixture
def service():
    return EventExtractionService()


def test_extract_surgery_follow_up_and_tests(service):
    transcript = "The doctor scheduled surgery and a follow up appointment, plus blood work before."

    result = service.extract(transcript, today=TODAY)

    types = [event["type"] for event in result["events"]]
    assert types == ["test", "surgery", "follow_up"]
    assert [event["date"] for event in result["events"]] == ["2024-03-04", "2024-03-08", "2024-03-15"]
    assert result["summary"]["totalEvents"] == 3
    assert result["summary"]["nextUpcomingEvent"]["type"] == "test"
    assert all(event["id"].startswith("evt_") for event in result["events"])


def test_medications_are_ordered_by_priority(service):
    result = service.extract("New prescription today, please stop the ibuprofen", today=TODAY)

    actions = [(med["action"], med["priority"]) for med in result["medications"]]
    assert actions == [("start", "high"), ("stop", "medium")]
    assert result["medications"][0]["startDate"] == "2024-03-01"
    assert result["summary"]["totalMedications"] == 2


def test_reminders_for_lifestyle_and_pain(service):
    result = service.extract("Keep up the exercise and note any pain", today=TODAY)

    reminders = result["reminders"]
    assert [r["type"] for r in reminders] == ["lifestyle_change", "symptom_onset"]
    assert reminders[1]["endDate"] == "2024-03-31"
    assert result["events"] == []


def test_empty_transcript_extracts_nothing(service):
    result = service.extract("", today=TODAY)

    assert result["summary"] == {
        "totalEvents": 0,
        "totalMedications": 0,
        "totalReminders": 0,
        "urgentItems": 0,
        "nextUpcomingEvent": None,
    }


def test_priority_rank():
    assert priority_rank("urgent") > priority_rank("high") > priority_rank("medium") > priority_rank("low")
    assert priority_rank(None) == 0


def test_analyze_conversation_topics_and_urgency(service):
    analysis = service.analyze_conversation(
        "We talked about blood pressure. The surgery is next week. Also check glucose daily."
    )

    assert analysis["urgencyLevel"] == "high"
    assert "blood pressure" in analysis["keyTopics"]
    assert "surgery" in analysis["keyTopics"]
    assert analysis["summary"] == "We talked about blood pressure. The surgery is next week."


def test_analyze_conversation_low_urgency(service):
    analysis = service.analyze_conversation("Feeling fine, nothing new.")

    assert analysis["urgencyLevel"] == "low"
    assert analysis["keyTopics"] == []


def test_summarize_truncates_and_defaults():
    assert EventExtractionService.summarize("") == "Voice conversation recorded"

    summary = EventExtractionService.summarize("x" * 400)
    assert len(summary) == 280
    assert summary.endswith("...")
