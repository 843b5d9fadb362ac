from __future__ import annotations

import pytest

from app.domain.errors import ValidationError
from app.domain.surveys import missing_required_answers, normalize_questions, survey_statistics


def test_normalize_keeps_ids_and_sorts_by_order() -> None:
    questions = normalize_questions(
        [
            {"id": "q2", "text": " Второй ", "type": "text", "order": 5},
            {"id": "q1", "text": "Первый", "type": "yes_no", "order": 1, "isRequired": 1},
        ]
    )
    assert [question["id"] for question in questions] == ["q1", "q2"]
    assert questions[0]["isRequired"] is True
    assert questions[1]["text"] == "Второй"
    assert normalize_questions(None) == []


def test_normalize_rejects_malformed_questions() -> None:
    with pytest.raises(ValidationError):
        normalize_questions({"text": "not a list"})
    with pytest.raises(ValidationError):
        normalize_questions([{"text": ""}])
    with pytest.raises(ValidationError):
        normalize_questions([{"text": "Цвет?", "type": "single_choice", "options": [1, 2]}])


def test_required_answers_treat_blank_values_as_missing() -> None:
    questions = [{"id": "a", "isRequired": True}, {"id": "b", "isRequired": True}, {"id": "c"}]
    assert missing_required_answers(questions, {"a": "", "b": []}) == ["a", "b"]
    assert missing_required_answers(questions, {"a": 0, "b": False}) == []


def test_statistics_per_question_type() -> None:
    questions = [
        {"id": "r", "text": "Оценка", "type": "rating"},
        {"id": "y", "text": "Да или нет", "type": "yes_no"},
        {"id": "s", "text": "Выбор", "type": "single_choice", "options": ["A", "B"]},
        {"id": "t", "text": "Комментарий", "type": "text"},
    ]
    answer_sets = [
        {"r": 5, "y": "yes", "s": "A", "t": "Отлично"},
        {"r": "4", "y": False, "s": "A", "t": ""},
        {"r": "n/a", "y": "no", "s": "B"},
    ]
    rating, yes_no, choice, text = survey_statistics(questions, answer_sets)

    assert rating.total_answers == 3
    assert rating.average == 4.5
    assert rating.distribution == {"5": 1, "4": 1}

    assert (yes_no.yes_count, yes_no.no_count) == (1, 2)
    assert yes_no.yes_percent == 33.3

    assert choice.option_counts == {"A": 2, "B": 1}
    assert choice.options == ["A", "B"]

    assert text.total_answers == 1
    assert text.text_answers == ["Отлично"]


def test_statistics_without_responses() -> None:
    [rating, yes_no] = survey_statistics(
        [{"id": "r", "text": "Оценка", "type": "rating"}, {"id": "y", "text": "?", "type": "yes_no"}],
        [],
    )
    assert (rating.total_answers, rating.average, rating.distribution) == (0, 0.0, {})
    assert yes_no.yes_percent == 0.0
