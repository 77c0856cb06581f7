import enum
import logging
import math
from datetime import date
from typing import Dict, List, Optional

from errors import NotFound, ValidationFailed
from ledger import CYCLE_BADGE, Ledger
from schemas import Article, DailyChallenge, QuizLevel, QuizQuestion

logger = logging.getLogger(__name__)

PASS_SCORE = 4


def _q(qid, question, choices, answer, explanation):
    a, b, c, d = choices
    return QuizQuestion(id=qid, question=question, choices={"A": a, "B": b, "C": c, "D": d},
                        answer=answer, explanation=explanation)


LEVELS: Dict[str, QuizLevel] = {
    level.id: level
    for level in [
        QuizLevel(
            id=CYCLE_BADGE,
            topic="Cycle Phases 101",
            level="beginner",
            reward=50,
            unlocks_badge=CYCLE_BADGE,
            questions=[
                _q("q1", "Which phase is typically right before menstruation starts?",
                   ("Follicular", "Ovulatory", "Luteal", "Menstrual"), "C",
                   "The luteal phase occurs after ovulation and ends when menstruation begins."),
                _q("q2", "Ovulation usually happens around the middle of a typical cycle. What is released?",
                   ("A follicle", "An egg", "Progesterone", "Menstrual blood"), "B",
                   "Ovulation is when an ovary releases an egg."),
                _q("q3", "Which is a common, non-diagnostic sign that may happen in the luteal phase?",
                   ("Higher energy for everyone", "Cravings or bloating for some people",
                    "Guaranteed weight loss", "Always no symptoms"), "B",
                   "Some people experience cravings, bloating, or mood changes in the luteal phase."),
                _q("q4", "A balanced snack for steady energy often includes:",
                   ("Only candy", "Only water", "Protein + fiber (like yogurt + berries)", "Only soda"), "C",
                   "Protein and fiber can help steady energy and keep you fuller longer."),
                _q("q5", "Which statement is most accurate?",
                   ("Everyone has the same cycle length", "Cycles can vary and tracking helps you learn patterns",
                    "Symptoms always mean something is wrong", "Cycle phases are not real"), "B",
                   "Cycles vary person to person; tracking helps spot your own patterns."),
            ],
        ),
        QuizLevel(
            id="cycle_literacy_lv2",
            topic="Hormones and Energy",
            level="intermediate",
            reward=75,
            questions=[
                _q("q1", "Which hormone rises after ovulation?",
                   ("Progesterone", "Insulin", "Adrenaline", "Melatonin"), "A",
                   "The corpus luteum produces progesterone after ovulation."),
                _q("q2", "Rising estrogen in the follicular phase often brings:",
                   ("Lower energy for everyone", "More energy for many people", "No change at all",
                    "Guaranteed cramps"), "B",
                   "Many people notice energy and mood lift as estrogen rises."),
                _q("q3", "A typical cycle length is usually counted from:",
                   ("Ovulation to ovulation", "First day of bleeding to the next first day",
                    "Last day of bleeding to the next", "The first of each month"), "B",
                   "Cycle day 1 is the first day of a period."),
                _q("q4", "Which habit can help with menstrual cramps for some people?",
                   ("Skipping water", "Gentle movement and heat", "Staying up all night", "Extra soda"), "B",
                   "Light stretching and warmth help many people with cramps."),
                _q("q5", "The fertile window is usually:",
                   ("The whole cycle", "A few days around ovulation", "Only during the period",
                    "Only the last day of the cycle"), "B",
                   "Fertility is highest in the days leading up to and including ovulation."),
            ],
        ),
        QuizLevel(
            id="cycle_literacy_lv3",
            topic="Tracking and Period Equity",
            level="advanced",
            reward=100,
            questions=[
                _q("q1", "Why is logging symptoms daily useful?",
                   ("It diagnoses conditions", "It reveals your own patterns over time",
                    "It changes your hormones", "It shortens your cycle"), "B",
                   "Consistent logs make it easier to spot your personal patterns."),
                _q("q2", "Spotting between periods is best described as:",
                   ("Always an emergency", "Light bleeding outside a period that is worth tracking",
                    "The same as ovulation", "Impossible"), "B",
                   "Spotting can have many causes; noting it helps conversations with a clinician."),
                _q("q3", "Period poverty refers to:",
                   ("Limited access to menstrual products and education", "Short cycles",
                    "Heavy flow", "A phase of the cycle"), "A",
                   "Period poverty is a lack of access to products, facilities and education."),
                _q("q4", "Which of these is a helpful donation to a period drive?",
                   ("Used products", "Sealed pads and tampons", "Expired medicine", "Nothing"), "B",
                   "Sealed, unused products are what drives can distribute."),
                _q("q5", "When should cycle changes be discussed with a clinician?",
                   ("Never", "When they are severe, sudden or worrying to you", "Only once a decade",
                    "Only if a friend says so"), "B",
                   "Severe or unexpected changes are worth raising with a professional."),
            ],
        ),
    ]
}

ARTICLES: Dict[str, Article] = {
    a.id: a
    for a in [
        Article(id="phases-overview", title="The four cycle phases at a glance"),
        Article(id="cramps-relief", title="Easing cramps at home"),
        Article(id="luteal-nutrition", title="Eating for the luteal phase"),
        Article(id="period-equity", title="What period equity means"),
    ]
}

CHALLENGE_POOL: List[DailyChallenge] = [
    DailyChallenge(id="hydrate", title="Hydration check", description="Drink 8 glasses of water today."),
    DailyChallenge(id="log-mood", title="Mood check-in", description="Log your mood and energy."),
    DailyChallenge(id="stretch", title="Gentle stretch", description="Do 10 minutes of stretching or yoga."),
    DailyChallenge(id="sleep", title="Wind down", description="Put screens away 30 minutes before bed."),
    DailyChallenge(id="walk", title="Fresh air", description="Take a 15 minute walk outside."),
    DailyChallenge(id="learn", title="Learn something", description="Read one article in Learn."),
    DailyChallenge(id="snack", title="Balanced snack", description="Pair a protein with a fiber snack."),
]


def get_level(level_id: str) -> QuizLevel:
    level = LEVELS.get(level_id)
    if level is None:
        raise NotFound(f"Unknown quiz level: {level_id}")
    return level


def public_questions(level: QuizLevel) -> List[Dict]:
    return [q.model_dump(exclude={"answer", "explanation"}) for q in level.questions]


def pass_threshold(total: int) -> int:
    # 4 of 5, the same 80% for other sizes
    return max(1, math.ceil(total * PASS_SCORE / 5))


def daily_challenges(day: date) -> List[DailyChallenge]:
    """The challenges offered on ``day``; identical for every user."""
    n = len(CHALLENGE_POOL)
    first = day.toordinal() % n
    step = 1 + (day.toordinal() // n) % (n - 1)
    return [CHALLENGE_POOL[first], CHALLENGE_POOL[(first + step) % n]]


class QuizState(enum.Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"


class QuizSession:
    """One quiz attempt. Lives only for the duration of a request."""

    def __init__(self):
        self.state = QuizState.IDLE
        self.level: Optional[QuizLevel] = None
        self.answers: Dict[str, str] = {}
        self.score: Optional[int] = None

    def start(self, level_id: str) -> List[QuizQuestion]:
        self.level = get_level(level_id)
        self.answers = {q.id: "" for q in self.level.questions}
        self.score = None
        self.state = QuizState.IN_PROGRESS
        return list(self.level.questions)

    def answer(self, question_id: str, choice: str) -> None:
        if self.state is not QuizState.IN_PROGRESS:
            raise ValidationFailed("Start the quiz before answering")
        if question_id not in self.answers:
            raise ValidationFailed(f"Unknown question: {question_id}")
        self.answers[question_id] = (choice or "").strip().upper()

    def submit(self) -> Optional[int]:
        """Score the attempt. Returns None, staying in progress, while any answer is blank."""
        if self.state is not QuizState.IN_PROGRESS:
            return self.score
        if any(not a for a in self.answers.values()):
            return None
        self.score = sum(1 for q in self.level.questions if self.answers[q.id] == q.answer)
        self.state = QuizState.SUBMITTED
        return self.score

    @property
    def passed(self) -> bool:
        return self.score is not None and self.score >= pass_threshold(len(self.level.questions))


class QuizEngine:
    def __init__(self, ledger: Ledger):
        self.ledger = ledger

    def grade(self, user_id: str, level_id: str, answers: Dict[str, str]) -> Dict:
        session = QuizSession()
        questions = session.start(level_id)
        for q in questions:
            if q.id in answers:
                session.answer(q.id, answers[q.id])
        score = session.submit()
        if score is None:
            raise ValidationFailed("Answer every question before submitting")

        level = session.level
        result = {
            "level_id": level.id,
            "score": score,
            "total": len(questions),
            "passed": session.passed,
            "points_awarded": 0,
            "badge_unlocked": None,
            "explanations": {q.id: q.explanation for q in questions},
            "correct": {q.id: q.answer for q in questions},
        }
        if not session.passed:
            return result

        if self.ledger.record_level_completion(user_id, level.id, level.reward):
            result["points_awarded"] = level.reward
        if level.unlocks_badge:
            self.ledger.set_badge_unlocked(user_id, level.unlocks_badge, True)
            result["badge_unlocked"] = level.unlocks_badge
        logger.info("User %s passed %s with %s/%s", user_id, level.id, score, len(questions))
        return result

    def read_article(self, user_id: str, article_id: str) -> Dict:
        article = ARTICLES.get(article_id)
        if article is None:
            raise NotFound(f"Unknown article: {article_id}")
        credited = self.ledger.record_article_read(user_id, article.id, article.reward)
        return {"article_id": article.id, "points_awarded": article.reward if credited else 0}

    def complete_challenge(self, user_id: str, challenge_id: str, day: date) -> Dict:
        offered = {c.id: c for c in daily_challenges(day)}
        challenge = offered.get(challenge_id)
        if challenge is None:
            raise ValidationFailed(f"Challenge {challenge_id} is not offered on {day.isoformat()}")
        credited = self.ledger.record_daily_challenge(user_id, day.isoformat(), challenge.id, challenge.reward)
        return {
            "challenge_id": challenge.id,
            "date": day.isoformat(),
            "points_awarded": challenge.reward if credited else 0,
        }
