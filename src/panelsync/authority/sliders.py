"""Extraction of ``slider(...)`` declarations from pattern source.

Two shapes are recognised:

* master sliders, ``NAME = slider(value, min, max)``, identified as
  ``master_<name lower>`` and labelled with the variable name;
* panel sliders, any ``slider(...)`` call, identified by the character offset
  of the call as ``slider_<offset>``. The label is the ``//`` comment on the
  same line, else the capitalised method the slider is passed to
  (``.lpf(slider(...))`` gives ``Lpf``), else ``Slider <n>``.

Source is tokenized rather than matched with a regular expression so that
nested calls and string arguments containing commas or parentheses do not
break argument splitting. Results are cached by a hash of the source.
"""

from __future__ import annotations

import hashlib
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterator

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<line_comment>//[^\n]*)
  | (?P<block_comment>/\*.*?(?:\*/|\Z))
  | (?P<string>"(?:\\.|[^"\\])*"?|'(?:\\.|[^'\\])*'?|`(?:\\.|[^`\\])*`?)
  | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
  | (?P<ident>[A-Za-z_$][\w$]*)
  | (?P<punct>.)
    """,
    re.VERBOSE | re.DOTALL,
)

_SKIPPED = frozenset({"ws", "line_comment", "block_comment"})
_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = frozenset(_OPENERS.values())

CACHE_SIZE = 256


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    start: int


@dataclass(frozen=True)
class SliderDeclaration:
    """One slider found in source."""

    slider_id: str
    label: str
    value: float
    min: float
    max: float
    offset: int


def tokenize(source: str) -> Iterator[Token]:
    """Yield every token of ``source``, including whitespace and comments."""
    for match in _TOKEN_RE.finditer(source):
        kind = match.lastgroup
        yield Token(kind=kind, text=match.group(), start=match.start())


def code_tokens(source: str) -> list[Token]:
    """Tokens with whitespace and comments removed."""
    return [t for t in tokenize(source) if t.kind not in _SKIPPED]


def brackets_balanced(source: str) -> bool:
    """True if every bracket outside strings and comments is matched."""
    stack: list[str] = []
    for token in code_tokens(source):
        if token.text in _OPENERS:
            stack.append(_OPENERS[token.text])
        elif token.text in _CLOSERS:
            if not stack or stack.pop() != token.text:
                return False
    return not stack


def _split_args(tokens: list[Token], open_index: int) -> tuple[list[list[Token]], int] | None:
    """Split the call arguments starting at the ``(`` at ``open_index``.

    Returns the top-level arguments and the index of the closing ``)``, or
    None when the call is unterminated.
    """
    args: list[list[Token]] = [[]]
    depth = 0
    for index in range(open_index + 1, len(tokens)):
        token = tokens[index]
        if token.text in _OPENERS:
            depth += 1
        elif token.text in _CLOSERS:
            if depth == 0:
                if token.text != ")":
                    return None
                if not args[-1]:
                    args.pop()
                return args, index
            depth -= 1
        elif token.text == "," and depth == 0:
            args.append([])
            continue
        args[-1].append(token)
    return None


def _number(arg: list[Token] | None) -> float | None:
    if not arg:
        return None
    sign = 1.0
    if len(arg) == 2 and arg[0].text in "+-" and arg[0].kind == "punct":
        sign = -1.0 if arg[0].text == "-" else 1.0
        arg = arg[1:]
    if len(arg) == 1 and arg[0].kind == "number":
        return sign * float(arg[0].text)
    return None


def _numeric_args(args: list[list[Token]]) -> tuple[float, float, float]:
    padded = args + [None] * (3 - len(args))
    low = _number(padded[1])
    high = _number(padded[2])
    low = 0.0 if low is None else low
    high = 1.0 if high is None else high
    value = _number(padded[0])
    return (low if value is None else value), low, high


def _slider_calls(tokens: list[Token]) -> Iterator[tuple[int, list[list[Token]]]]:
    for index, token in enumerate(tokens):
        if token.kind != "ident" or token.text != "slider":
            continue
        if index + 1 >= len(tokens) or tokens[index + 1].text != "(":
            continue
        # Skip property access like obj.slider(...)
        if index > 0 and tokens[index - 1].text == ".":
            continue
        split = _split_args(tokens, index + 1)
        if split is None:
            continue
        yield index, split[0]


def _comments_by_line(source: str) -> dict[int, str]:
    comments = {}
    for token in tokenize(source):
        if token.kind == "line_comment":
            text = token.text[2:].strip()
            if text:
                comments[source.count("\n", 0, token.start)] = text
    return comments


def _scan_master(source: str) -> tuple[SliderDeclaration, ...]:
    tokens = code_tokens(source)
    found: dict[str, SliderDeclaration] = {}
    for index, args in _slider_calls(tokens):
        if index < 2 or tokens[index - 1].text != "=" or tokens[index - 2].kind != "ident":
            continue
        # Reject comparisons such as a == slider(...)
        if index >= 3 and tokens[index - 3].text in ("=", "!", "<", ">"):
            continue
        name = tokens[index - 2].text
        value, low, high = _numeric_args(args)
        slider_id = f"master_{name.lower()}"
        found[slider_id] = SliderDeclaration(
            slider_id=slider_id,
            label=name,
            value=value,
            min=low,
            max=high,
            offset=tokens[index].start,
        )
    return tuple(found.values())


def _scan_panel(source: str) -> tuple[SliderDeclaration, ...]:
    tokens = code_tokens(source)
    comments = _comments_by_line(source)
    declarations = []
    for position, (index, args) in enumerate(_slider_calls(tokens)):
        offset = tokens[index].start
        label = comments.get(source.count("\n", 0, offset))
        if label is None and index >= 3:
            if tokens[index - 1].text == "(" and tokens[index - 3].text == ".":
                method = tokens[index - 2].text
                label = method[:1].upper() + method[1:]
        if label is None:
            label = f"Slider {position + 1}"
        value, low, high = _numeric_args(args)
        declarations.append(
            SliderDeclaration(
                slider_id=f"slider_{offset}",
                label=label,
                value=value,
                min=low,
                max=high,
                offset=offset,
            )
        )
    return tuple(declarations)


_cache: OrderedDict[tuple[str, str], tuple[SliderDeclaration, ...]] = OrderedDict()


def source_digest(source: str) -> str:
    return hashlib.sha256(source.encode("utf-8")).hexdigest()[:16]


def _cached(kind: str, source: str, scan) -> tuple[SliderDeclaration, ...]:
    key = (kind, source_digest(source))
    result = _cache.get(key)
    if result is not None:
        _cache.move_to_end(key)
        return result
    result = scan(source)
    _cache[key] = result
    if len(_cache) > CACHE_SIZE:
        _cache.popitem(last=False)
    return result


def extract_master_sliders(source: str) -> tuple[SliderDeclaration, ...]:
    """Sliders assigned to variables in master code, in source order."""
    return _cached("master", source or "", _scan_master)


def extract_panel_sliders(source: str) -> tuple[SliderDeclaration, ...]:
    """Every slider call in a panel's code, in source order."""
    return _cached("panel", source or "", _scan_panel)


def clear_cache() -> None:
    _cache.clear()
