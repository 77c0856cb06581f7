from datetime import date

from chat import extract_signal
from schemas import DailyLogEntry


def test_extract_known_symptoms():
    signal = extract_signal("I have cramps and feel bloated")
    assert signal["symptoms"] == ["Bloating", "Stomach pain"]
    assert signal["note"] is None


def test_unmatched_feeling_becomes_note():
    signal = extract_signal("I feel a bit off today")
    assert signal["symptoms"] == []
    assert signal["note"] == "Chat note: I feel a bit off today"


def test_small_talk_is_ignored():
    assert extract_signal("what should I eat?") == {"symptoms": [], "note": None}


def test_chat_merges_symptoms_into_today(client, store):
    body = {"userId": "u", "message": "I have cramps and feel bloated", "todayISO": "2026-02-03"}
    resp = client.post("/chat/cycle", json=body)
    data = resp.json()
    assert data["cycle_day"] == 3
    assert data["phase"] == "menstrual"
    assert "bloating, stomach pain" in data["answer"]

    day = store.get_day("u", "2026-02-03")
    assert sorted(day["symptoms"]) == ["Bloating", "Stomach pain"]

    client.post("/chat/cycle", json=body)
    assert len(store.get_day("u", "2026-02-03")["symptoms"]) == 2


def test_note_is_appended_once(client, store):
    body = {"userId": "u", "message": "I feel tired", "todayISO": "2026-02-03"}
    client.post("/chat/cycle", json=body)
    client.post("/chat/cycle", json=body)
    assert store.get_day("u", "2026-02-03")["notes"] == "Chat note: I feel tired"


def test_last_period_question(client, store):
    body = {"userId": "u", "message": "When was my last period?", "todayISO": "2026-03-10"}
    assert "don't have a logged period start" in client.post("/chat/cycle", json=body).json()["answer"]

    store.save(DailyLogEntry(user_id="u", date_iso=date(2026, 3, 1), period_start=True))
    assert "2026-03-01" in client.post("/chat/cycle", json=body).json()["answer"]
