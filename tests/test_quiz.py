from datetime import date, timedelta

import pytest

from errors import NotFound, ValidationFailed
from ledger import CYCLE_BADGE
from quiz import CHALLENGE_POOL, QuizEngine, QuizSession, QuizState, daily_challenges

PASSING = {"q1": "C", "q2": "B", "q3": "B", "q4": "C", "q5": "B"}


def test_session_lifecycle():
    session = QuizSession()
    assert session.state is QuizState.IDLE

    questions = session.start(CYCLE_BADGE)
    assert session.state is QuizState.IN_PROGRESS
    assert len(questions) == 5

    for qid, choice in list(PASSING.items())[:4]:
        session.answer(qid, choice)
    assert session.submit() is None
    assert session.state is QuizState.IN_PROGRESS

    session.answer("q5", "b")
    assert session.submit() == 5
    assert session.state is QuizState.SUBMITTED
    assert session.passed


def test_restart_discards_previous_attempt():
    session = QuizSession()
    session.start(CYCLE_BADGE)
    for qid, choice in PASSING.items():
        session.answer(qid, choice)
    session.submit()

    session.start(CYCLE_BADGE)
    assert session.state is QuizState.IN_PROGRESS
    assert session.score is None
    assert all(a == "" for a in session.answers.values())


def test_answer_before_start_is_rejected():
    with pytest.raises(ValidationFailed):
        QuizSession().answer("q1", "A")


def test_unknown_level():
    with pytest.raises(NotFound):
        QuizSession().start("nope")


def test_four_of_five_passes(ledger):
    answers = dict(PASSING, q1="A")
    result = QuizEngine(ledger).grade("u", CYCLE_BADGE, answers)
    assert result["score"] == 4
    assert result["passed"] is True


def test_three_of_five_fails_without_reward(ledger):
    answers = dict(PASSING, q1="A", q2="A")
    result = QuizEngine(ledger).grade("u", CYCLE_BADGE, answers)
    assert result["passed"] is False
    assert ledger.balance("u") == 0
    assert ledger.get("u").cycle_badge_unlocked is False


def test_passing_twice_awards_once(ledger):
    engine = QuizEngine(ledger)
    first = engine.grade("u", CYCLE_BADGE, PASSING)
    second = engine.grade("u", CYCLE_BADGE, PASSING)

    assert first["points_awarded"] == 50
    assert second["points_awarded"] == 0
    assert second["badge_unlocked"] == CYCLE_BADGE
    assert ledger.balance("u") == 50
    assert ledger.get("u").cycle_badge_unlocked is True


def test_non_gating_level_does_not_unlock_badge(ledger):
    answers = {"q1": "A", "q2": "B", "q3": "B", "q4": "B", "q5": "B"}
    result = QuizEngine(ledger).grade("u", "cycle_literacy_lv2", answers)
    assert result["points_awarded"] == 75
    assert result["badge_unlocked"] is None
    assert ledger.get("u").badges == {}


def test_blank_answer_is_rejected(ledger):
    answers = dict(PASSING, q5="")
    with pytest.raises(ValidationFailed):
        QuizEngine(ledger).grade("u", CYCLE_BADGE, answers)
    assert ledger.balance("u") == 0


def test_two_distinct_challenges_per_day_stable():
    day = date(2026, 3, 3)
    first = daily_challenges(day)
    assert len(first) == 2
    assert first[0].id != first[1].id
    assert [c.id for c in daily_challenges(day)] == [c.id for c in first]


def test_challenge_selection_varies_across_days():
    picks = {tuple(c.id for c in daily_challenges(date(2026, 1, 1) + timedelta(days=i))) for i in range(30)}
    assert len(picks) > 1
    used = {cid for pair in picks for cid in pair}
    assert used <= {c.id for c in CHALLENGE_POOL}


def test_complete_challenge_once_per_day(ledger):
    day = date(2026, 3, 3)
    cid = daily_challenges(day)[0].id
    engine = QuizEngine(ledger)
    assert engine.complete_challenge("u", cid, day)["points_awarded"] == 15
    assert engine.complete_challenge("u", cid, day)["points_awarded"] == 0
    assert ledger.balance("u") == 15


def test_challenge_not_offered_today_is_rejected(ledger):
    day = date(2026, 3, 3)
    offered = {c.id for c in daily_challenges(day)}
    other = next(c.id for c in CHALLENGE_POOL if c.id not in offered)
    with pytest.raises(ValidationFailed):
        QuizEngine(ledger).complete_challenge("u", other, day)


def test_quiz_endpoints_hide_answers_and_award(client):
    resp = client.get(f"/quiz/{CYCLE_BADGE}")
    assert resp.status_code == 200
    assert all("answer" not in q for q in resp.json()["questions"])

    resp = client.post(f"/quiz/{CYCLE_BADGE}/submit", json={"userId": "u", "answers": PASSING})
    assert resp.json()["points_awarded"] == 50

    progress = client.get("/progress/u").json()
    assert progress["points"] == 50
    assert progress["cycle_badge_unlocked"] is True
    assert progress["completed_levels"] == [CYCLE_BADGE]


def test_quiz_submit_with_blank_answer_returns_400(client):
    resp = client.post(f"/quiz/{CYCLE_BADGE}/submit", json={"userId": "u", "answers": {"q1": "C"}})
    assert resp.status_code == 400


def test_unknown_quiz_level_returns_404(client):
    assert client.get("/quiz/level_99").status_code == 404


def test_article_and_challenge_endpoints(client):
    resp = client.post("/articles/read", json={"userId": "u", "articleId": "phases-overview"})
    assert resp.json()["points_awarded"] == 10

    daily = client.get("/challenges/daily", params={"date": "2026-03-03"}).json()
    cid = daily["challenges"][0]["id"]
    resp = client.post("/challenges/complete", json={"userId": "u", "challengeId": cid, "dateISO": "2026-03-03"})
    assert resp.json()["points_awarded"] == 15
    assert client.get("/points/u").json()["points"] == 25
