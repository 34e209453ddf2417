"""
Skill-question gate.

A purchase only earns tickets when the buyer answered the competition's skill
question. The check is a pure predicate over an order item; with the gate
switched off every item is eligible.
"""
import re
from typing import Callable

from .model.domain import OrderItem

Eligibility = Callable[[OrderItem], bool]


def normalize_answer(s: str = "") -> str:
    return re.sub(r"[^a-z0-9]+", "", (s or "").lower()).strip()


def normalize_question(s: str = "") -> str:
    return re.sub(r"\s+", " ", (s or "").lower()).strip()


# Keep in sync with frontend ids (ids + answers must match)
QUESTIONS = {
    # football
    "fb-easy-001": ["11", "eleven"],
    "fb-easy-002": ["red", "redcard", "red card"],
    "fb-easy-003": ["hattrick", "hat trick", "hat-trick"],
    "fb-easy-004": ["90", "ninety", "90minutes", "90 minutes"],
    "fb-easy-005": ["3", "three"],
    # rugby
    "ru-easy-001": ["15", "fifteen"],
    "ru-easy-002": ["5", "five"],
    "ru-easy-003": ["lineout", "line out"],
    "ru-easy-004": ["scrum"],
    "ru-easy-005": ["3", "three"],
    # tennis
    "te-easy-001": ["40", "forty"],
    "te-easy-002": ["deuce"],
    "te-easy-003": ["racket", "racquet", "tennis racket", "tennis racquet"],
    "te-easy-004": ["ace"],
    "te-easy-005": ["love"],
    # golf
    "go-easy-001": ["18", "eighteen"],
    "go-easy-002": ["birdie"],
    "go-easy-003": ["putter"],
    "go-easy-004": ["holeinone", "hole in one", "ace"],
    "go-easy-005": ["eagle"],
    # f1
    "f1-easy-001": ["formula1", "formula 1", "formula one"],
    "f1-easy-002": ["25", "twentyfive", "twenty five"],
    "f1-easy-003": ["pitstop", "pit stop"],
    "f1-easy-004": ["qualifying", "quali"],
    "f1-easy-005": ["safetycar", "safety car"],
}

# older baskets carry the question text instead of an id
ANSWERS_BY_QUESTION = {
    "how many players are there in a rugby union team?": "15",
    "how many players are in a rugby union team?": "15",
    "how many players are there on a rugby union team?": "15",
    "which brand makes the famous predator football boots?": "adidas",
}


def is_correct_answer(question_id: str, typed_answer: str) -> bool:
    qid = (question_id or "").strip()
    typed = normalize_answer(typed_answer)
    if not qid or not typed:
        return False
    answers = QUESTIONS.get(qid)
    if not answers:
        return False
    return typed in {normalize_answer(a) for a in answers}


def is_correct_for_question(question: str, typed_answer: str) -> bool:
    expected = ANSWERS_BY_QUESTION.get(normalize_question(question))
    if not expected:
        return False
    return normalize_answer(typed_answer) == normalize_answer(expected)


def skill_gate(item: OrderItem) -> bool:
    if item.skill_question_id:
        return is_correct_answer(item.skill_question_id, item.selected_answer)
    return is_correct_for_question(item.skill_question, item.selected_answer)


def always_eligible(item: OrderItem) -> bool:
    return True


def eligibility_policy(enabled: bool) -> Eligibility:
    return skill_gate if enabled else always_eligible
