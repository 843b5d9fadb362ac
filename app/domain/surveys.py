from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any
from uuid import uuid4

from app.domain.errors import ValidationError
from app.domain.models import QuestionStatistics, QuestionType

CHOICE_TYPES = frozenset({QuestionType.SINGLE_CHOICE, QuestionType.MULTIPLE_CHOICE})


def _is_answered(value: Any) -> bool:
    return value is not None and value != "" and value != []


def normalize_questions(raw: Any) -> list[dict[str, Any]]:
    """Validate builder questions and give every question a stable id and order."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("Вопросы опроса должны быть списком")
    questions: list[dict[str, Any]] = []
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise ValidationError("Некорректный вопрос опроса")
        text = item.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Необходимо указать текст вопроса")
        try:
            question_type = QuestionType(item.get("type", QuestionType.TEXT))
        except ValueError as exc:
            raise ValidationError("Недопустимый тип вопроса") from exc
        options = item.get("options") or []
        if not isinstance(options, list) or not all(isinstance(option, str) for option in options):
            raise ValidationError("Варианты ответа должны быть списком строк")
        if question_type in CHOICE_TYPES and not options:
            raise ValidationError("Для вопроса с выбором нужны варианты ответа")
        order = item.get("order")
        questions.append(
            {
                "id": str(item.get("id") or uuid4()),
                "text": text.strip(),
                "type": question_type.value,
                "options": list(options),
                "isRequired": bool(item.get("isRequired", False)),
                "order": order if isinstance(order, int) and not isinstance(order, bool) else index,
            }
        )
    questions.sort(key=lambda question: question["order"])
    return questions


def missing_required_answers(questions: Iterable[Mapping[str, Any]], answers: Mapping[str, Any]) -> list[str]:
    return [
        str(question["id"])
        for question in questions
        if question.get("isRequired") and not _is_answered(answers.get(str(question["id"])))
    ]


def _as_rating(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return None
    return rating if math.isfinite(rating) else None


def _rating_key(value: float) -> str:
    return str(int(value)) if value.is_integer() else str(value)


def question_statistics(question: Mapping[str, Any], answer_sets: Iterable[Mapping[str, Any]]) -> QuestionStatistics:
    question_id = str(question["id"])
    question_type = QuestionType(question.get("type", QuestionType.TEXT))
    answers = [answer_set.get(question_id) for answer_set in answer_sets]
    answers = [answer for answer in answers if _is_answered(answer)]
    stats = QuestionStatistics(
        question_id=question_id,
        question_text=str(question.get("text", "")),
        question_type=question_type,
        total_answers=len(answers),
    )

    if question_type in CHOICE_TYPES:
        option_counts: dict[str, int] = {}
        for answer in answers:
            for choice in answer if isinstance(answer, list) else [answer]:
                option_counts[str(choice)] = option_counts.get(str(choice), 0) + 1
        stats.option_counts = option_counts
        stats.options = list(question.get("options") or [])
    elif question_type == QuestionType.RATING:
        ratings = [rating for rating in (_as_rating(answer) for answer in answers) if rating is not None]
        distribution: dict[str, int] = {}
        for rating in ratings:
            key = _rating_key(rating)
            distribution[key] = distribution.get(key, 0) + 1
        stats.average = round(sum(ratings) / len(ratings), 2) if ratings else 0.0
        stats.distribution = distribution
    elif question_type == QuestionType.YES_NO:
        yes_count = sum(1 for answer in answers if answer == "yes" or answer is True)
        no_count = sum(1 for answer in answers if answer == "no" or answer is False)
        stats.yes_count = yes_count
        stats.no_count = no_count
        stats.yes_percent = round(yes_count / len(answers) * 100, 1) if answers else 0.0
    else:
        stats.text_answers = [str(answer) for answer in answers]
    return stats


def survey_statistics(
    questions: Iterable[Mapping[str, Any]],
    answer_sets: Iterable[Mapping[str, Any]],
) -> list[QuestionStatistics]:
    collected = list(answer_sets)
    return [question_statistics(question, collected) for question in questions]
