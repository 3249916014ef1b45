"""Tasks: an exercise plus the level tracking how well it is remembered.

Completing a task is a short conversation through the interaction callback:

1. the exercise blocks are shown and the user's answer collected;
2. the answer is compared with the canonical and alternate answers;
3. a feedback form shows the answer next to the correct one and lists the
   grades the policy offers, each with the interval it would lead to;
4. the selected grade is recorded on the level.

Nothing on the task changes until every interaction has succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from ssr.blocks import (
    Blocks,
    BlocksWithAnswer,
    OneOf,
    Paragraph,
    Response,
    Text,
    blocks_from_storage,
    blocks_to_storage,
    eq_response,
    normalise_response,
    response_as_one_of,
    response_to_storage,
    to_answered,
)
from ssr.errors import InvalidResponse, NotFound
from ssr.level import Level, ensure_utc, utc_now
from ssr.policy import SchedulingPolicy, format_interval

Interaction = Callable[[Blocks], Sequence[Sequence[str]]]

CORRECT_DIRECTIVE = "All answers correct! Choose difficulty:"
WRONG_DIRECTIVE = "Your answer is wrong."
ACTUALLY_CORRECT = "It is actually correct"


class ContentStore(Protocol):
    def get_blocks(self, content_id: Any) -> Optional[Tuple[Blocks, Response, Sequence[Response]]]:
        ...


# ---------------------------------------------------------------------------
# Feedback protocol
# ---------------------------------------------------------------------------

def _feedback_form(
    blocks: Blocks,
    user_answer: Response,
    correct_answer: Response,
    directive: str,
    options: Sequence[str],
) -> Blocks:
    form = list(to_answered(blocks, user_answer, correct_answer))
    form.append(Paragraph())
    form.append(Paragraph((Text(directive),)))
    form.append(OneOf(tuple(options)))
    return tuple(form)


def _ask_choice(interaction: Interaction, form: Blocks, option_count: int) -> int:
    response = normalise_response(interaction(form))
    if not response:
        raise InvalidResponse("The feedback response is empty")
    index = response_as_one_of(response[-1])
    if not 0 <= index < option_count:
        raise InvalidResponse(f"Choice {index} is out of range for {option_count} options")
    return index


def _grade_options(
    policy: SchedulingPolicy, grades: Sequence[int], previews: Mapping[int, timedelta]
) -> List[str]:
    return [f"{policy.grade_label(grade)} {format_interval(previews[int(grade)])}" for grade in grades]


def _match_answer(
    user_answer: Response,
    correct_answer: Response,
    other_answers: Sequence[Response],
    trim: bool,
    case_insensitive: bool,
) -> Optional[Response]:
    """The accepted answer *user_answer* matches, or ``None`` when it is wrong."""

    for candidate in (correct_answer, *other_answers):
        if eq_response(candidate, user_answer, trim=trim, case_insensitive=case_insensitive):
            return candidate
    return None


def _collect_grade(
    policy: SchedulingPolicy,
    previews: Mapping[int, timedelta],
    blocks: Blocks,
    user_answer: Response,
    matched: Optional[Response],
    correct_answer: Response,
    interaction: Interaction,
    allow_alternate: bool,
) -> Tuple[int, Optional[Response]]:
    """Run the feedback rounds; return the grade and a newly accepted answer."""

    if matched is None:
        wrong_grades = list(policy.wrong_grades())
        options = _grade_options(policy, wrong_grades, previews)
        if allow_alternate:
            options.append(ACTUALLY_CORRECT)
        form = _feedback_form(blocks, user_answer, correct_answer, WRONG_DIRECTIVE, options)
        choice = _ask_choice(interaction, form, len(options))
        if choice < len(wrong_grades):
            return int(wrong_grades[choice]), None
        matched = user_answer
        accepted: Optional[Response] = user_answer
    else:
        accepted = None

    correct_grades = list(policy.correct_grades())
    options = _grade_options(policy, correct_grades, previews)
    form = _feedback_form(blocks, user_answer, matched, CORRECT_DIRECTIVE, options)
    choice = _ask_choice(interaction, form, len(options))
    return int(correct_grades[choice]), accepted


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A self-contained task embedding its exercise and answers.

    Parameters
    ----------
    input_blocks:
        The exercise shown to the user. Must contain interactive elements.
    correct_answer:
        The canonical response.
    other_answers:
        Further responses accepted as correct.
    trim / case_insensitive:
        How responses are compared with the accepted answers.
    """

    input_blocks: Blocks
    correct_answer: Response
    other_answers: Tuple[Response, ...] = ()
    level: Level = field(default_factory=Level)
    trim: bool = True
    case_insensitive: bool = False

    def __post_init__(self) -> None:
        self.input_blocks = tuple(self.input_blocks)
        self.correct_answer = normalise_response(self.correct_answer)
        self.other_answers = tuple(normalise_response(answer) for answer in self.other_answers)
        if not BlocksWithAnswer(self.input_blocks, self.correct_answer).has_interactive_elements:
            raise ValueError("A task must contain interactive elements")

    @classmethod
    def from_blocks(cls, blocks_with_answer: BlocksWithAnswer) -> "Task":
        return cls(blocks_with_answer.blocks, blocks_with_answer.answer)

    def get_blocks(self) -> BlocksWithAnswer:
        return BlocksWithAnswer(self.input_blocks, self.correct_answer)

    def next_repetition(
        self, policy: SchedulingPolicy, shared: Any, retrievability_goal: float
    ) -> datetime:
        return self.level.next_repetition(policy, shared, retrievability_goal)

    def correctness(self, user_answer: Sequence[Sequence[str]]) -> Optional[Response]:
        return _match_answer(
            normalise_response(user_answer),
            self.correct_answer,
            self.other_answers,
            self.trim,
            self.case_insensitive,
        )

    def complete(
        self,
        policy: SchedulingPolicy,
        shared: Any,
        retrievability_goal: float,
        interaction: Interaction,
        now: Optional[datetime] = None,
    ) -> int:
        """Review the task once and return the recorded grade.

        If *interaction* raises, the exception propagates and the task is left
        unmodified.
        """

        review_time = ensure_utc(now) if now is not None else utc_now()
        user_answer = normalise_response(interaction(self.input_blocks))
        previews = self.level.next_states(policy, shared, retrievability_goal, review_time)
        grade, accepted = _collect_grade(
            policy,
            previews,
            self.input_blocks,
            user_answer,
            self.correctness(user_answer),
            self.correct_answer,
            interaction,
            allow_alternate=True,
        )
        level = policy.update(self.level, grade, review_time)

        if accepted is not None:
            self.other_answers = self.other_answers + (accepted,)
        self.level = level
        return grade

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------
    def to_storage(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "level": self.level.to_storage(),
            "input_blocks": blocks_to_storage(self.input_blocks),
            "correct_answer": response_to_storage(self.correct_answer),
            "other_answers": [response_to_storage(answer) for answer in self.other_answers],
        }
        if not self.trim or self.case_insensitive:
            data["answer_policy"] = {"trim": self.trim, "case_insensitive": self.case_insensitive}
        return data

    @classmethod
    def from_storage(cls, payload: Mapping[str, Any]) -> "Task":
        answer_policy = payload.get("answer_policy") or {}
        return cls(
            input_blocks=blocks_from_storage(payload.get("input_blocks", [])),
            correct_answer=normalise_response(payload.get("correct_answer", [])),
            other_answers=tuple(
                normalise_response(answer) for answer in payload.get("other_answers", [])
            ),
            level=Level.from_storage(payload.get("level")),
            trim=bool(answer_policy.get("trim", True)),
            case_insensitive=bool(answer_policy.get("case_insensitive", False)),
        )


@dataclass
class StatelessTask:
    """A task whose exercise lives in an external :class:`ContentStore`."""

    content_id: Any
    level: Level = field(default_factory=Level)

    def next_repetition(
        self, policy: SchedulingPolicy, shared: Any, retrievability_goal: float
    ) -> datetime:
        return self.level.next_repetition(policy, shared, retrievability_goal)

    def complete(
        self,
        policy: SchedulingPolicy,
        shared: Any,
        retrievability_goal: float,
        store: ContentStore,
        interaction: Interaction,
        now: Optional[datetime] = None,
    ) -> int:
        content = store.get_blocks(self.content_id)
        if content is None:
            raise NotFound(self.content_id)
        blocks, correct_answer, other_answers = content
        blocks = tuple(blocks)
        correct_answer = normalise_response(correct_answer)
        other_answers = tuple(normalise_response(answer) for answer in other_answers)

        review_time = ensure_utc(now) if now is not None else utc_now()
        user_answer = normalise_response(interaction(blocks))
        previews = self.level.next_states(policy, shared, retrievability_goal, review_time)
        grade, _ = _collect_grade(
            policy,
            previews,
            blocks,
            user_answer,
            _match_answer(user_answer, correct_answer, other_answers, True, False),
            correct_answer,
            interaction,
            allow_alternate=False,
        )
        self.level = policy.update(self.level, grade, review_time)
        return grade

    def to_storage(self) -> Dict[str, Any]:
        return {"level": self.level.to_storage(), "content_id": self.content_id}

    @classmethod
    def from_storage(cls, payload: Mapping[str, Any]) -> "StatelessTask":
        return cls(payload["content_id"], Level.from_storage(payload.get("level")))


__all__ = [
    "ACTUALLY_CORRECT",
    "ContentStore",
    "Interaction",
    "StatelessTask",
    "Task",
]
