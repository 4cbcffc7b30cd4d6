"""
Per-question summaries over stored form responses.

Numeric questions report the mean of the answers that parse as finite
floats; every other type reports the most frequent answer, ties going to the
value seen first. Either field is the string "N/A" when it does not apply or
nothing usable was collected.
"""
from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.formhub.errors import NotFoundError
from app.formhub.modules.responses.models import FormResponse
from app.formhub.modules.templates.access import get_template_or_404
from app.formhub.modules.templates.models import NUMERIC_TYPES, Question

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"


@dataclass(frozen=True)
class QuestionSummary:
    question_id: int
    question_text: str
    question_type: str
    response_count: int
    avg_numeric_value: float | str
    most_common_string_value: str

    def to_dict(self) -> dict:
        return asdict(self)


def parse_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_strings(value: Any) -> list[str]:
    # Checkbox answers arrive as lists; each selected option counts once.
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if not _is_blank(v)]
    return [str(value)]


def mean_or_na(answers: list[Any]) -> float | str:
    numbers = [n for n in (parse_number(a) for a in answers) if n is not None]
    if not numbers:
        return NOT_AVAILABLE
    return sum(numbers) / len(numbers)


def most_common_or_na(answers: list[Any]) -> str:
    counts: Counter[str] = Counter()
    for a in answers:
        counts.update(_as_strings(a))
    if not counts:
        return NOT_AVAILABLE
    # most_common() is stable, so equal counts keep first-seen order.
    return counts.most_common(1)[0][0]


def summarize_question(question: Question, answers: list[Any]) -> QuestionSummary:
    if question.type in NUMERIC_TYPES:
        avg: float | str = mean_or_na(answers)
        most_common = NOT_AVAILABLE
    else:
        avg = NOT_AVAILABLE
        most_common = most_common_or_na(answers)
    return QuestionSummary(
        question_id=question.id,
        question_text=question.value,
        question_type=question.type,
        response_count=len(answers),
        avg_numeric_value=avg,
        most_common_string_value=most_common,
    )


def collect_answers(questions: list[Question], rows: list[FormResponse]) -> dict[int, list[Any]]:
    """Group answers by question id, skipping rows whose payload does not decode."""
    by_question: dict[int, list[Any]] = {q.id: [] for q in questions}
    key_to_id = {str(q.id): q.id for q in questions}
    skipped = 0
    for row in rows:
        data = row.decoded()
        if data is None:
            skipped += 1
            logger.warning("Skipping malformed response payload id=%s template=%s", row.id, row.template_id)
            continue
        for key, value in data.items():
            qid = key_to_id.get(str(key))
            if qid is None or _is_blank(value):
                continue
            by_question[qid].append(value)
    if skipped:
        logger.info("Aggregation skipped %d malformed response(s)", skipped)
    return by_question


def aggregate(s: "Session", template_id: int) -> list[QuestionSummary]:
    """One summary per question of the template, in question order."""
    template = get_template_or_404(s, template_id)
    questions = list(
        s.execute(
            select(Question).where(Question.template_id == template.id).order_by(Question.position.asc(), Question.id.asc())
        ).scalars()
    )
    if not questions:
        raise NotFoundError("Template has no questions", template_id=template.id)

    rows = list(
        s.execute(
            select(FormResponse)
            .where(FormResponse.template_id == template.id)
            .order_by(FormResponse.submitted_at.asc(), FormResponse.id.asc())
        ).scalars()
    )
    answers = collect_answers(questions, rows)
    return [summarize_question(q, answers[q.id]) for q in questions]
