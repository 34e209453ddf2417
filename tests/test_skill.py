"""Tests for the skill-question gate."""

from rafflefans.model.domain import OrderItem
from rafflefans.skill import (
    always_eligible,
    eligibility_policy,
    is_correct_answer,
    is_correct_for_question,
    normalize_answer,
    skill_gate,
)


class TestNormalize:
    def test_answer(self):
        assert normalize_answer(" Hat-Trick! ") == "hattrick"
        assert normalize_answer(None) == ""


class TestAnswers:
    def test_by_question_id(self):
        assert is_correct_answer("fb-easy-001", "Eleven")
        assert is_correct_answer("fb-easy-001", "11")
        assert not is_correct_answer("fb-easy-001", "12")

    def test_unknown_or_blank(self):
        assert not is_correct_answer("nope-001", "11")
        assert not is_correct_answer("", "11")
        assert not is_correct_answer("fb-easy-001", "  ")

    def test_by_question_text(self):
        q = "How many players are there in a   Rugby Union team?"
        assert is_correct_for_question(q, "15")
        assert not is_correct_for_question(q, "11")
        assert not is_correct_for_question("Who are you?", "15")


class TestGate:
    def test_prefers_question_id(self):
        it = OrderItem(
            competition_id="c", qty=1,
            skill_question_id="ru-easy-003",
            skill_question="Which brand makes the famous predator "
                           "football boots?",
            selected_answer="line out",
        )
        assert skill_gate(it)

    def test_falls_back_to_question_text(self):
        it = OrderItem(
            competition_id="c", qty=1,
            skill_question="Which brand makes the famous predator "
                           "football boots?",
            selected_answer="ADIDAS",
        )
        assert skill_gate(it)

    def test_no_question_is_ineligible(self):
        assert not skill_gate(OrderItem(competition_id="c", qty=1))

    def test_policy(self):
        assert eligibility_policy(True) is skill_gate
        assert eligibility_policy(False) is always_eligible
        assert always_eligible(OrderItem(competition_id="c", qty=1))
