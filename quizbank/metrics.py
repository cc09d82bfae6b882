"""
History metrics derived from the question catalog and the history log.

Everything here is a pure function of its inputs and is recomputed on every
call; session scores are never used as a source for cross-session analytics.
"""
import dataclasses
from dataclasses import dataclass
from datetime import datetime
from typing import AbstractSet, Dict, Iterable, Iterator, List, Sequence

from .models import Category, HistoryRecord, Question, QuestionBank


@dataclass
class QuestionOutcome:
    """Per-question membership flags accumulated over the whole history."""
    seen: bool = False
    correct: bool = False
    incorrect: bool = False
    omitted: bool = False


@dataclass(frozen=True)
class CategoryCounts:
    """Set sizes per category. Categories may overlap."""
    unused: int = 0
    used: int = 0
    correct: int = 0
    incorrect: int = 0
    marked: int = 0
    omitted: int = 0

    def as_dict(self) -> Dict[Category, int]:
        return {category: getattr(self, category.value) for category in Category}


@dataclass(frozen=True)
class SeriesPoint:
    """One point of the score-over-time chart."""
    index: int
    percentage_score: float
    date: datetime


def question_outcomes(history: Iterable[HistoryRecord]) -> Dict[int, QuestionOutcome]:
    """
    Scan every attempt of every record, in order.

    Args:
        history: Records in chronological order

    Returns:
        Mapping of question id to its accumulated outcome flags
    """
    outcomes: Dict[int, QuestionOutcome] = {}
    for record in history:
        for attempt in record.attempts:
            outcome = outcomes.setdefault(attempt.question_id, QuestionOutcome())
            outcome.seen = True
            if attempt.is_omitted:
                # An omission always counts as incorrect
                outcome.omitted = True
                outcome.incorrect = True
            elif attempt.is_correct:
                outcome.correct = True
            else:
                outcome.incorrect = True
    return outcomes


def _iter_questions(catalog: Iterable[QuestionBank]) -> Iterator[Question]:
    for bank in catalog:
        yield from bank.questions


def classify(catalog: Sequence[QuestionBank], history: Sequence[HistoryRecord]) -> CategoryCounts:
    """
    Count questions per history category.

    seen/correct/incorrect/omitted are built from the history alone; unused is
    every catalog question never seen; marked is independent of history.
    """
    outcomes = question_outcomes(history)
    questions = list(_iter_questions(catalog))

    return CategoryCounts(
        unused=sum(1 for q in questions if q.id not in outcomes),
        used=len(outcomes),
        correct=sum(1 for o in outcomes.values() if o.correct),
        incorrect=sum(1 for o in outcomes.values() if o.incorrect),
        marked=sum(1 for q in questions if q.is_marked),
        omitted=sum(1 for o in outcomes.values() if o.omitted),
    )


def overall_accuracy(counts: CategoryCounts) -> float:
    """Percentage of correct over correct + incorrect, 0.0 when nothing was answered."""
    denominator = counts.correct + counts.incorrect
    if denominator == 0:
        return 0.0
    return counts.correct / denominator * 100


def matches_category(question: Question, outcome: QuestionOutcome, category: Category) -> bool:
    """Membership test shared by classification and filtering."""
    if category == Category.UNUSED:
        return not outcome.seen
    if category == Category.USED:
        return outcome.seen
    if category == Category.CORRECT:
        return outcome.correct
    if category == Category.INCORRECT:
        return outcome.incorrect
    if category == Category.OMITTED:
        return outcome.omitted
    if category == Category.MARKED:
        return question.is_marked
    raise ValueError(f"Unknown category: {category}")


def filter_catalog(
    catalog: Sequence[QuestionBank],
    history: Sequence[HistoryRecord],
    active_filters: AbstractSet[Category]
) -> Sequence[QuestionBank]:
    """
    Restrict the catalog to questions matching ANY active filter.

    Args:
        catalog: Banks in catalog order
        history: Records in chronological order
        active_filters: Selected categories; empty means no filtering

    Returns:
        The catalog itself when no filter is active, otherwise new banks
        holding the retained (canonical) questions. Banks left empty are dropped.
    """
    if not active_filters:
        return catalog

    filters = {Category(f) for f in active_filters}
    outcomes = question_outcomes(history)
    empty = QuestionOutcome()
    filtered: List[QuestionBank] = []

    for bank in catalog:
        retained = tuple(
            question for question in bank.questions
            if any(
                matches_category(question, outcomes.get(question.id, empty), category)
                for category in filters
            )
        )
        if retained:
            filtered.append(dataclasses.replace(bank, questions=retained))

    return filtered


def history_series(history: Sequence[HistoryRecord]) -> Iterator[SeriesPoint]:
    """Yield one chart point per record, numbered from 1, in insertion order."""
    for position, record in enumerate(history, start=1):
        yield SeriesPoint(
            index=position,
            percentage_score=record.percentage,
            date=record.date,
        )
