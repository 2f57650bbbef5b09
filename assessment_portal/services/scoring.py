"""Per-answer scoring.

Single source of truth for Likert reversal: option scores are stored as the
plain (unreversed) scale value and ``likert_score_value`` applies reversal at
read time from ``is_reversed`` + ``likert_points``. Nothing persists a
pre-reversed score.
"""
from typing import Any, List, Optional, Tuple, Union

from assessment_portal.models.question import QuestionType
from assessment_portal.schemas.test_assignment import (
    ChoiceAnswer,
    LikertAnswer,
    TextAnswer,
)

AnswerVariant = Union[TextAnswer, ChoiceAnswer, LikertAnswer]

LIKERT_LABELS = {
    3: ["Disagree", "Neutral", "Agree"],
    5: ["Strongly Disagree", "Disagree", "Neutral", "Agree", "Strongly Agree"],
    7: [
        "Strongly Disagree",
        "Disagree",
        "Somewhat Disagree",
        "Neutral",
        "Somewhat Agree",
        "Agree",
        "Strongly Agree",
    ],
}

_LIKERT_TYPES = {QuestionType.likert_scale, QuestionType.rating_scale}
_CHOICE_TYPES = {QuestionType.single_choice, QuestionType.multiple_choice}


def standard_likert_options(points: int) -> List[dict]:
    """Canonical option list for a 3/5/7 point scale (position == score)."""
    if points not in LIKERT_LABELS:
        raise ValueError(f"Unsupported Likert scale: {points} points")
    return [
        {"position": idx, "text": label, "score": idx}
        for idx, label in enumerate(LIKERT_LABELS[points], start=1)
    ]


def is_likert_question(question) -> bool:
    return bool(question.is_likert) or question.question_type in _LIKERT_TYPES


def scale_points(question) -> int:
    return question.likert_points or len(question.options) or 0


def likert_score_value(position: int, points: int, is_reversed: bool) -> int:
    """Score for a 1-indexed scale position, inverted for reversed items."""
    if is_reversed:
        return (points + 1) - position
    return position


def max_score(question) -> int:
    if is_likert_question(question):
        return scale_points(question)
    scores = [opt.score or 0 for opt in question.options]
    return max(scores) if scores else 0


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def resolve_likert_position(question, response: LikertAnswer) -> Optional[int]:
    """Label match first, then option score, then raw 1-indexed position."""
    options = list(question.options)
    if response.label is not None:
        for idx, opt in enumerate(options, start=1):
            if opt.text == response.label:
                return idx
    number = response.position if response.position is not None else _as_int(response.label)
    if number is None:
        return None
    for idx, opt in enumerate(options, start=1):
        if opt.score == number:
            return idx
    upper = len(options) or scale_points(question)
    if 1 <= number <= upper:
        return number
    return None


def resolve_choice_option(question, response: ChoiceAnswer):
    if response.option_id is not None:
        for opt in question.options:
            if opt.id == response.option_id:
                return opt
    if response.label is not None:
        for opt in question.options:
            if opt.text == response.label:
                return opt
    return None


def likert_position_for(question, response: AnswerVariant) -> Optional[int]:
    """Scale position of any answer variant given to a Likert question."""
    if isinstance(response, LikertAnswer):
        return resolve_likert_position(question, response)
    if isinstance(response, ChoiceAnswer):
        option = resolve_choice_option(question, response)
        if option is None:
            return None
        return list(question.options).index(option) + 1
    return None


def choice_option_for(question, response: AnswerVariant):
    """Configured option picked by any answer variant given to a choice question."""
    if isinstance(response, ChoiceAnswer):
        return resolve_choice_option(question, response)
    if isinstance(response, LikertAnswer):
        options = list(question.options)
        if response.label is not None:
            for opt in options:
                if opt.text == response.label:
                    return opt
        if response.position is not None and 1 <= response.position <= len(options):
            return options[response.position - 1]
    return None


def score_answer(question, response: AnswerVariant) -> Tuple[int, int]:
    """Return ``(score_obtained, max_score)`` for one response to ``question``.

    The question type picks the formula; the answer variant only says how the
    respondent identified their pick.
    """
    ceiling = max_score(question)
    if is_likert_question(question):
        position = likert_position_for(question, response)
        if position is None:
            return 0, ceiling
        return likert_score_value(position, scale_points(question), bool(question.is_reversed)), ceiling
    if question.question_type in _CHOICE_TYPES:
        option = choice_option_for(question, response)
        return (option.score or 0) if option is not None else 0, ceiling
    # free text is captured but never scored
    return 0, ceiling


def coerce_response(question, raw: Any) -> AnswerVariant:
    """Wrap an untyped legacy value in the variant matching the question type."""
    if is_likert_question(question):
        number = _as_int(raw)
        if number is not None and not any(opt.text == str(raw) for opt in question.options):
            return LikertAnswer(position=number)
        return LikertAnswer(label=str(raw))
    if question.question_type in _CHOICE_TYPES:
        number = _as_int(raw)
        if number is not None and any(opt.id == number for opt in question.options):
            return ChoiceAnswer(option_id=number)
        return ChoiceAnswer(label=str(raw))
    return TextAnswer(text=str(raw))


def _raw_value(response: AnswerVariant) -> str:
    if isinstance(response, LikertAnswer):
        return response.label if response.label is not None else str(response.position)
    if isinstance(response, ChoiceAnswer):
        return response.label if response.label is not None else str(response.option_id)
    return response.text


def display_value(question, response: AnswerVariant) -> str:
    """Human-readable value of a response (the option text when one resolves)."""
    if is_likert_question(question):
        position = likert_position_for(question, response)
        options = list(question.options)
        if position is not None and position <= len(options):
            return options[position - 1].text
    elif question.question_type in _CHOICE_TYPES:
        option = choice_option_for(question, response)
        if option is not None:
            return option.text
    return _raw_value(response)
