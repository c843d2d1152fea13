"""
A small, two-way template engine for connection strings.

A template mixes literal text with "{name}" placeholders, e.g.
"mysql://{user}:{password}@{host}:{port}/{database}". The same template can
be used in both directions:

- extract() matches a concrete string against the template and returns the
  value of each placeholder.
- fill() renders the template from a dictionary of values.

Matching is deliberately simple: a placeholder's value runs up to the first
occurrence of the next literal, or to the end of the input if no literal
follows. That's why two placeholders can't be adjacent.
"""

import re
from dataclasses import dataclass
from typing import Mapping, Sequence

from dbhub.errors import TemplateMismatch, UnboundVariableSegmentation

VARIABLE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(frozen=True)
class Literal:
    """
    Literal text in a template.
    """

    text: str


@dataclass(frozen=True)
class Variable:
    """
    A named placeholder in a template.
    """

    name: str


Token = Literal | Variable
Bindings = dict[str, str]


def tokenize(template: str) -> list[Token]:
    """
    Split a template into Literal and Variable tokens. Anything that isn't a
    well-formed placeholder (e.g., "{1x}" or an unclosed "{") is literal text.
    An empty template yields no tokens, and no empty Literal is ever produced.

    :param template: the template string

    :returns: the tokens, in order
    """
    tokens: list[Token] = []
    pos = 0
    for m in VARIABLE.finditer(template):
        if m.start() > pos:
            tokens.append(Literal(template[pos : m.start()]))
        tokens.append(Variable(m.group(1)))
        pos = m.end()

    if pos < len(template):
        tokens.append(Literal(template[pos:]))

    return tokens


def render(tokens: Sequence[Token]) -> str:
    """
    The inverse of tokenize(): turn tokens back into template text.
    """
    return "".join(
        t.text if isinstance(t, Literal) else f"{{{t.name}}}" for t in tokens
    )


def _check_segmentation(template: str, tokens: Sequence[Token]) -> None:
    for current, following in zip(tokens, tokens[1:]):
        if isinstance(current, Variable) and isinstance(following, Variable):
            raise UnboundVariableSegmentation(template, current.name, following.name)


def _next_literal(tokens: Sequence[Token], start: int) -> Literal | None:
    for token in tokens[start:]:
        if isinstance(token, Literal) and token.text:
            return token
    return None


def extract(template: str, text: str) -> Bindings:
    """
    Match a concrete string against a template and return the values of the
    template's variables. If a variable name appears more than once, the last
    occurrence wins.

    :param template: the template, e.g. "redis://{host}:{port}"
    :param text: the string to match, e.g. "redis://localhost:6379"

    :returns: a dictionary mapping variable names to values

    :raises UnboundVariableSegmentation: if the template has two adjacent
        variables. This is checked before any input is examined.
    :raises TemplateMismatch: if the string doesn't match the template
    """
    tokens = tokenize(template)
    _check_segmentation(template, tokens)

    bindings: Bindings = {}
    cursor = 0
    for i, token in enumerate(tokens):
        match token:
            case Literal(literal):
                if not text.startswith(literal, cursor):
                    raise TemplateMismatch(
                        template, text, cursor, f'expected "{literal}"'
                    )
                cursor += len(literal)

            case Variable(name):
                upcoming = _next_literal(tokens, i + 1)
                if upcoming is None:
                    boundary = len(text)
                else:
                    boundary = text.find(upcoming.text, cursor)
                    if boundary < 0:
                        raise TemplateMismatch(
                            template,
                            text,
                            cursor,
                            f'"{upcoming.text}" not found after {{{name}}}',
                        )
                bindings[name] = text[cursor:boundary]
                cursor = boundary

    if cursor != len(text):
        raise TemplateMismatch(
            template, text, cursor, f'unexpected trailing "{text[cursor:]}"'
        )

    return bindings


def fill(template: str, bindings: Mapping[str, str]) -> str:
    """
    Render a template. Unbound variables render as the empty string.

    :param template: the template
    :param bindings: values for the template's variables

    :returns: the rendered string
    """
    return "".join(
        t.text if isinstance(t, Literal) else bindings.get(t.name, "")
        for t in tokenize(template)
    )
