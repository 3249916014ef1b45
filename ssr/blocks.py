"""Exercise fragments exchanged with the interaction callback.

An exercise is an ordered sequence of *blocks*. Interactive blocks
(:class:`Paragraph` with placeholders, :class:`OneOf`, :class:`AnyOf` and
:class:`Order`) collect answers; a *response* is the ordered list of answer
values for each block, index-aligned with the blocks that were shown:

``Paragraph``
    one string per placeholder, in display order.
``OneOf``
    ``["<index>"]`` of the selected option.
``AnyOf``
    ``["<index>", ...]`` of every selected option.
``Order``
    the original position of each item, in the order the user arranged them.

The ``Answered*`` blocks are display-only fragments showing a user answer
next to the correct one. They are produced by :func:`to_answered` and never
collect input.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ssr.errors import InvalidResponse


# ---------------------------------------------------------------------------
# Paragraph items
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class Placeholder:
    """A blank the user fills in."""


@dataclass(frozen=True)
class AnswerPair:
    user_answer: str
    correct_answer: str


ParagraphItem = Union[Text, Placeholder]
AnsweredParagraphItem = Union[Text, AnswerPair]


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Paragraph:
    items: Tuple[ParagraphItem, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(_coerce_item(item) for item in self.items))

    @property
    def placeholder_count(self) -> int:
        return sum(1 for item in self.items if isinstance(item, Placeholder))


@dataclass(frozen=True)
class OneOf:
    options: Tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", tuple(str(option) for option in self.options))


@dataclass(frozen=True)
class AnyOf:
    options: Tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", tuple(str(option) for option in self.options))


@dataclass(frozen=True)
class Order:
    items: Tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(str(item) for item in self.items))


@dataclass(frozen=True)
class AnsweredParagraph:
    items: Tuple[AnsweredParagraphItem, ...]


@dataclass(frozen=True)
class AnsweredOneOf:
    options: Tuple[str, ...]
    user_answer: Optional[int]
    correct_answer: Optional[int]


@dataclass(frozen=True)
class AnsweredAnyOf:
    options: Tuple[str, ...]
    user_answer: Tuple[int, ...]
    correct_answer: Tuple[int, ...]


@dataclass(frozen=True)
class AnsweredOrder:
    items: Tuple[str, ...]
    user_answer: Tuple[int, ...]
    correct_answer: Tuple[int, ...]


Block = Union[
    Paragraph,
    OneOf,
    AnyOf,
    Order,
    AnsweredParagraph,
    AnsweredOneOf,
    AnsweredAnyOf,
    AnsweredOrder,
]
Blocks = Tuple[Block, ...]
ResponseItem = Tuple[str, ...]
Response = Tuple[ResponseItem, ...]


def _coerce_item(item: Any) -> ParagraphItem:
    if isinstance(item, (Text, Placeholder)):
        return item
    if isinstance(item, str):
        return Text(item)
    raise TypeError(f"Unsupported paragraph item: {item!r}")


def paragraph(*items: Union[str, ParagraphItem]) -> Paragraph:
    """Build a :class:`Paragraph`; plain strings become :class:`Text`."""

    return Paragraph(tuple(items))


@dataclass(frozen=True)
class BlocksWithAnswer:
    """An exercise together with its canonical answer."""

    blocks: Blocks
    answer: Response

    def __post_init__(self) -> None:
        object.__setattr__(self, "blocks", tuple(self.blocks))
        object.__setattr__(self, "answer", normalise_response(self.answer))

    @property
    def has_interactive_elements(self) -> bool:
        return sum(len(item) for item in self.answer) > 0


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def normalise_response(response: Sequence[Sequence[Any]]) -> Response:
    """Return *response* as a tuple of string tuples."""

    if isinstance(response, (str, bytes)):
        raise TypeError("A response must be a sequence of answer lists, not a string")
    normalised: List[ResponseItem] = []
    for item in response:
        if isinstance(item, (str, bytes)):
            raise TypeError("Each response item must be a sequence of strings")
        normalised.append(tuple(str(value) for value in item))
    return tuple(normalised)


def _normalise_value(value: str, trim: bool, case_insensitive: bool) -> str:
    if trim:
        value = value.strip()
    if case_insensitive:
        value = value.lower()
    return value


def eq_response(
    a: Sequence[Sequence[str]],
    b: Sequence[Sequence[str]],
    *,
    trim: bool = True,
    case_insensitive: bool = False,
) -> bool:
    """Compare two responses item by item."""

    if len(a) != len(b):
        return False
    for item_a, item_b in zip(a, b):
        if len(item_a) != len(item_b):
            return False
        for value_a, value_b in zip(item_a, item_b):
            if _normalise_value(value_a, trim, case_insensitive) != _normalise_value(
                value_b, trim, case_insensitive
            ):
                return False
    return True


def response_as_one_of(item: Sequence[str]) -> int:
    """Return the selected index of a ``OneOf`` response item."""

    if len(item) != 1:
        raise InvalidResponse(f"Expected exactly one selection, got {len(item)}")
    try:
        return int(item[0])
    except ValueError as exc:
        raise InvalidResponse(f"Selection {item[0]!r} is not an index") from exc


def _parse_indices(item: Sequence[str]) -> Tuple[int, ...]:
    indices = []
    for value in item:
        try:
            indices.append(int(value))
        except ValueError:
            continue
    return tuple(indices)


def _answer_block(block: Block, user: Sequence[str], correct: Sequence[str]) -> Block:
    if isinstance(block, Paragraph):
        answers = iter(zip(_padded(user, block.placeholder_count), _padded(correct, block.placeholder_count)))
        items: List[AnsweredParagraphItem] = []
        for item in block.items:
            if isinstance(item, Placeholder):
                user_value, correct_value = next(answers)
                items.append(AnswerPair(user_value, correct_value))
            else:
                items.append(item)
        return AnsweredParagraph(tuple(items))
    if isinstance(block, OneOf):
        user_index = _parse_indices(user)
        correct_index = _parse_indices(correct)
        return AnsweredOneOf(
            block.options,
            user_index[0] if len(user_index) == 1 else None,
            correct_index[0] if len(correct_index) == 1 else None,
        )
    if isinstance(block, AnyOf):
        return AnsweredAnyOf(
            block.options,
            tuple(sorted(_parse_indices(user))),
            tuple(sorted(_parse_indices(correct))),
        )
    if isinstance(block, Order):
        return AnsweredOrder(block.items, _parse_indices(user), _parse_indices(correct))
    raise ValueError("An already answered block cannot be answered again")


def _padded(values: Sequence[str], length: int) -> List[str]:
    padded = list(values[:length])
    padded.extend("" for _ in range(length - len(padded)))
    return padded


def to_answered(
    blocks: Sequence[Block],
    user_answer: Sequence[Sequence[str]],
    correct_answer: Sequence[Sequence[str]],
) -> List[Block]:
    """Pair every block with the user's and the correct answer for display.

    Missing response items are treated as empty answers so that a malformed
    user response can still be shown next to the correct one.
    """

    answered: List[Block] = []
    for index, block in enumerate(blocks):
        user = user_answer[index] if index < len(user_answer) else ()
        correct = correct_answer[index] if index < len(correct_answer) else ()
        answered.append(_answer_block(block, user, correct))
    return answered


# ---------------------------------------------------------------------------
# Storage helpers
# ---------------------------------------------------------------------------


def _item_to_storage(item: Union[ParagraphItem, AnswerPair]) -> Dict[str, Any]:
    if isinstance(item, Text):
        return {"text": item.text}
    if isinstance(item, Placeholder):
        return {"placeholder": True}
    return {"user_answer": item.user_answer, "correct_answer": item.correct_answer}


def _item_from_storage(payload: Mapping[str, Any]) -> Union[ParagraphItem, AnswerPair]:
    if "text" in payload:
        return Text(str(payload["text"]))
    if payload.get("placeholder"):
        return Placeholder()
    if "user_answer" in payload:
        return AnswerPair(str(payload["user_answer"]), str(payload.get("correct_answer", "")))
    raise ValueError(f"Unknown paragraph item record: {dict(payload)!r}")


def block_to_storage(block: Block) -> Dict[str, Any]:
    """Serialise *block* into a JSON friendly dictionary."""

    if isinstance(block, Paragraph):
        return {"kind": "paragraph", "items": [_item_to_storage(item) for item in block.items]}
    if isinstance(block, OneOf):
        return {"kind": "one_of", "options": list(block.options)}
    if isinstance(block, AnyOf):
        return {"kind": "any_of", "options": list(block.options)}
    if isinstance(block, Order):
        return {"kind": "order", "items": list(block.items)}
    if isinstance(block, AnsweredParagraph):
        return {
            "kind": "answered_paragraph",
            "items": [_item_to_storage(item) for item in block.items],
        }
    if isinstance(block, AnsweredOneOf):
        return {
            "kind": "answered_one_of",
            "options": list(block.options),
            "user_answer": block.user_answer,
            "correct_answer": block.correct_answer,
        }
    if isinstance(block, AnsweredAnyOf):
        return {
            "kind": "answered_any_of",
            "options": list(block.options),
            "user_answer": list(block.user_answer),
            "correct_answer": list(block.correct_answer),
        }
    if isinstance(block, AnsweredOrder):
        return {
            "kind": "answered_order",
            "items": list(block.items),
            "user_answer": list(block.user_answer),
            "correct_answer": list(block.correct_answer),
        }
    raise TypeError(f"Unsupported block: {block!r}")


def block_from_storage(payload: Mapping[str, Any]) -> Block:
    """Create a block from a record produced by :func:`block_to_storage`."""

    kind = payload.get("kind")
    if kind == "paragraph":
        return Paragraph(tuple(_item_from_storage(item) for item in payload.get("items", [])))  # type: ignore[arg-type]
    if kind == "one_of":
        return OneOf(tuple(payload.get("options", [])))
    if kind == "any_of":
        return AnyOf(tuple(payload.get("options", [])))
    if kind == "order":
        return Order(tuple(payload.get("items", [])))
    if kind == "answered_paragraph":
        return AnsweredParagraph(tuple(_item_from_storage(item) for item in payload.get("items", [])))  # type: ignore[arg-type]
    if kind == "answered_one_of":
        return AnsweredOneOf(
            tuple(str(option) for option in payload.get("options", [])),
            payload.get("user_answer"),
            payload.get("correct_answer"),
        )
    if kind == "answered_any_of":
        return AnsweredAnyOf(
            tuple(str(option) for option in payload.get("options", [])),
            tuple(int(value) for value in payload.get("user_answer", [])),
            tuple(int(value) for value in payload.get("correct_answer", [])),
        )
    if kind == "answered_order":
        return AnsweredOrder(
            tuple(str(item) for item in payload.get("items", [])),
            tuple(int(value) for value in payload.get("user_answer", [])),
            tuple(int(value) for value in payload.get("correct_answer", [])),
        )
    raise ValueError(f"Unknown block kind: {kind!r}")


def blocks_to_storage(blocks: Sequence[Block]) -> List[Dict[str, Any]]:
    return [block_to_storage(block) for block in blocks]


def blocks_from_storage(payload: Sequence[Mapping[str, Any]]) -> Blocks:
    return tuple(block_from_storage(record) for record in payload)


def response_to_storage(response: Sequence[Sequence[str]]) -> List[List[str]]:
    return [list(item) for item in response]


__all__ = [
    "AnswerPair",
    "AnsweredAnyOf",
    "AnsweredOneOf",
    "AnsweredOrder",
    "AnsweredParagraph",
    "AnyOf",
    "Block",
    "Blocks",
    "BlocksWithAnswer",
    "OneOf",
    "Order",
    "Paragraph",
    "Placeholder",
    "Response",
    "Text",
    "block_from_storage",
    "block_to_storage",
    "blocks_from_storage",
    "blocks_to_storage",
    "eq_response",
    "normalise_response",
    "paragraph",
    "response_as_one_of",
    "response_to_storage",
    "to_answered",
]
