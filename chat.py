import re
from typing import Dict, List, Optional

from logs import DailyLogStore
from phases import PHASE_INSIGHTS, estimate_phase

SYMPTOM_RULES = [
    ("Nausea", [r"\bnausea\b", r"\bnauseous\b", r"\bqueasy\b"]),
    ("Acne", [r"\bacne\b", r"\bpimples?\b", r"\bbreakouts?\b"]),
    ("Bloating", [r"\bbloat(ing|ed)?\b"]),
    ("Stomach pain", [r"\bstomach pain\b", r"\babdominal pain\b", r"\bcramp(s|ing)?\b", r"\bbelly pain\b"]),
    ("Hot flash", [r"\bhot flash(es)?\b", r"\boverheat(ing)?\b", r"\btoo hot\b"]),
]

FEELING = re.compile(
    r"\b(i feel|i'm feeling|im feeling|i have|i'm having|im having|symptoms?|pain|cramps?|nausea|bloating|acne|hot flash)\b",
    re.IGNORECASE,
)


def extract_signal(message: str) -> Dict:
    """Known symptom labels in ``message`` and whether it should be kept as a note."""
    text = (message or "").strip()
    if not text:
        return {"symptoms": [], "note": None}
    matched: List[str] = []
    for label, patterns in SYMPTOM_RULES:
        if any(re.search(p, text, re.IGNORECASE) for p in patterns):
            matched.append(label)
    note = None
    if not matched and FEELING.search(text):
        note = f"Chat note: {text}"
    return {"symptoms": matched, "note": note}


def answer(store: DailyLogStore, user_id: str, message: str, today_iso: str) -> Dict:
    signal = extract_signal(message)
    if signal["symptoms"] or signal["note"]:
        store.merge_signal(user_id, today_iso, signal["symptoms"], signal["note"])

    last_start: Optional[str] = store.last_period_start(user_id, today_iso)
    lower = message.lower()
    if "last period" in lower or "last cycle" in lower:
        if last_start:
            text = f"Your most recent logged period start was {last_start}."
        else:
            text = ("I don't have a logged period start date yet. Tap a day and mark it as "
                    "Period Start so I can track this for you.")
        return {"answer": text, "symptoms_logged": signal["symptoms"]}

    estimate = estimate_phase(today_iso, last_start)
    text = f"You're on day {estimate.cycle_day}, in your {estimate.phase.capitalize()} phase. {PHASE_INSIGHTS[estimate.phase]}"
    if signal["symptoms"]:
        text += f" I've added {', '.join(s.lower() for s in signal['symptoms'])} to today's log."
    return {
        "answer": text,
        "phase": estimate.phase,
        "cycle_day": estimate.cycle_day,
        "symptoms_logged": signal["symptoms"],
    }
