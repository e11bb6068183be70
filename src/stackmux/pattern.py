"""Path template compiler with named parameter support.

Inspired by pillarjs/path-to-regexp (v6 syntax):

    /users/:id              named parameter
    /files/(.*)             unnamed (numbered) parameter
    /book{/:chapter}?       optional group with prefix
    /tags/:tag+             one or more, joined by the prefix
    /:lang(en|fr)/docs      parameter with a custom pattern
"""

import re
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import PatternError

DEFAULT_DELIMITER = "/#?"
DEFAULT_PREFIXES = "./"


class _TokenType(Enum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"
    PATTERN = "PATTERN"
    NAME = "NAME"
    CHAR = "CHAR"
    ESCAPED_CHAR = "ESCAPED_CHAR"
    MODIFIER = "MODIFIER"
    END = "END"


@dataclass(slots=True, frozen=True)
class _LexToken:
    type: _TokenType
    index: int
    value: str


@dataclass(slots=True, frozen=True)
class Key:
    """A parameter in a parsed path template."""

    name: str | int
    prefix: str = ""
    suffix: str = ""
    pattern: str = ""
    modifier: str = ""

    @property
    def optional(self) -> bool:
        return self.modifier in ("?", "*")

    @property
    def repeat(self) -> bool:
        return self.modifier in ("*", "+")


type Token = str | Key


def _is_name_char(char: str) -> bool:
    return char.isascii() and (char.isalnum() or char == "_")


def _lexer(path: str) -> Iterator[_LexToken]:
    i = 0
    while i < len(path):
        char = path[i]

        if char in "*+?":
            yield _LexToken(_TokenType.MODIFIER, i, char)
            i += 1
            continue

        if char == "\\":
            if i + 1 >= len(path):
                msg = f"Unterminated escape at {i}"
                raise PatternError(msg)
            yield _LexToken(_TokenType.ESCAPED_CHAR, i, path[i + 1])
            i += 2
            continue

        if char == "{":
            yield _LexToken(_TokenType.OPEN, i, char)
            i += 1
            continue

        if char == "}":
            yield _LexToken(_TokenType.CLOSE, i, char)
            i += 1
            continue

        if char == ":":
            j = i + 1
            while j < len(path) and _is_name_char(path[j]):
                j += 1
            name = path[i + 1 : j]
            if not name:
                msg = f"Missing parameter name at {i}"
                raise PatternError(msg)
            yield _LexToken(_TokenType.NAME, i, name)
            i = j
            continue

        if char == "(":
            pattern, j = _read_pattern(path, i)
            yield _LexToken(_TokenType.PATTERN, i, pattern)
            i = j
            continue

        yield _LexToken(_TokenType.CHAR, i, char)
        i += 1

    yield _LexToken(_TokenType.END, i, "")


def _read_pattern(path: str, start: int) -> tuple[str, int]:
    """Read a balanced ``(...)`` group starting at ``start``.

    Returns the group body without parens and the index just past it.
    """
    count = 1
    j = start + 1
    if j < len(path) and path[j] == "?":
        msg = f'Pattern cannot start with "?" at {j}'
        raise PatternError(msg)

    pattern = []
    while j < len(path):
        char = path[j]
        if char == "\\":
            pattern.append(path[j : j + 2])
            j += 2
            continue
        if char == ")":
            count -= 1
            if count == 0:
                j += 1
                break
        elif char == "(":
            count += 1
            if j + 1 >= len(path) or path[j + 1] != "?":
                msg = f"Capturing groups are not allowed at {j}"
                raise PatternError(msg)
        pattern.append(char)
        j += 1

    if count:
        msg = f"Unbalanced pattern at {start}"
        raise PatternError(msg)
    if not pattern:
        msg = f"Missing pattern at {start}"
        raise PatternError(msg)
    return "".join(pattern), j


class _Cursor:
    __slots__ = ("_i", "_tokens")

    def __init__(self, tokens: list[_LexToken]) -> None:
        self._tokens = tokens
        self._i = 0

    def try_consume(self, type_: _TokenType) -> str | None:
        token = self._tokens[self._i]
        if token.type is type_:
            self._i += 1
            return token.value
        return None

    def must_consume(self, type_: _TokenType) -> str:
        value = self.try_consume(type_)
        if value is not None:
            return value
        token = self._tokens[self._i]
        msg = (
            f"Unexpected {token.type.value} at {token.index}, "
            f"expected {type_.value}"
        )
        raise PatternError(msg)

    def consume_text(self) -> str:
        result = []
        while True:
            value = self.try_consume(_TokenType.CHAR)
            if value is None:
                value = self.try_consume(_TokenType.ESCAPED_CHAR)
            if value is None:
                return "".join(result)
            result.append(value)


def parse(
    path: str,
    *,
    delimiter: str = DEFAULT_DELIMITER,
    prefixes: str = DEFAULT_PREFIXES,
) -> list[Token]:
    """Parse a path template into literal strings and parameter keys.

    Raises ``PatternError`` if the template is malformed.
    """
    cursor = _Cursor(list(_lexer(path)))
    default_pattern = f"[^{re.escape(delimiter)}]+?"
    result: list[Token] = []
    key = 0
    literal = ""

    while True:
        char = cursor.try_consume(_TokenType.CHAR)
        name = cursor.try_consume(_TokenType.NAME)
        pattern = cursor.try_consume(_TokenType.PATTERN)

        if name is not None or pattern is not None:
            prefix = char or ""
            if prefix not in prefixes:
                literal += prefix
                prefix = ""
            if literal:
                result.append(literal)
                literal = ""
            if name is None:
                param_name: str | int = key
                key += 1
            else:
                param_name = name
            result.append(
                Key(
                    name=param_name,
                    prefix=prefix,
                    pattern=pattern or default_pattern,
                    modifier=cursor.try_consume(_TokenType.MODIFIER) or "",
                )
            )
            continue

        value = char
        if value is None:
            value = cursor.try_consume(_TokenType.ESCAPED_CHAR)
        if value is not None:
            literal += value
            continue

        if literal:
            result.append(literal)
            literal = ""

        if cursor.try_consume(_TokenType.OPEN) is not None:
            prefix = cursor.consume_text()
            name = cursor.try_consume(_TokenType.NAME) or ""
            pattern = cursor.try_consume(_TokenType.PATTERN) or ""
            suffix = cursor.consume_text()
            cursor.must_consume(_TokenType.CLOSE)
            if name:
                param_name = name
            elif pattern:
                param_name = key
                key += 1
            else:
                param_name = ""
            result.append(
                Key(
                    name=param_name,
                    prefix=prefix,
                    suffix=suffix,
                    pattern=default_pattern if name and not pattern else pattern,
                    modifier=cursor.try_consume(_TokenType.MODIFIER) or "",
                )
            )
            continue

        cursor.must_consume(_TokenType.END)
        return result


def tokens_to_regexp(
    tokens: Sequence[Token],
    keys: list[Key] | None = None,
    *,
    sensitive: bool = False,
    strict: bool = False,
    start: bool = True,
    end: bool = True,
    delimiter: str = DEFAULT_DELIMITER,
    ends_with: str = "",
) -> re.Pattern[str]:
    """Build a regular expression from parsed tokens.

    Every key with a pattern produces exactly one capture group, and is
    appended to ``keys`` in the same order.
    """
    ends_with_re = f"[{re.escape(ends_with)}]|$" if ends_with else "$"
    delimiter_re = f"[{re.escape(delimiter)}]"
    route = "^" if start else ""

    for token in tokens:
        if isinstance(token, str):
            route += re.escape(token)
            continue

        prefix = re.escape(token.prefix)
        suffix = re.escape(token.suffix)
        if not token.pattern:
            route += f"(?:{prefix}{suffix}){token.modifier}"
            continue

        if keys is not None:
            keys.append(token)
        if prefix or suffix:
            if token.repeat:
                mod = "?" if token.modifier == "*" else ""
                route += (
                    f"(?:{prefix}((?:{token.pattern})"
                    f"(?:{suffix}{prefix}(?:{token.pattern}))*){suffix}){mod}"
                )
            else:
                route += f"(?:{prefix}({token.pattern}){suffix}){token.modifier}"
        elif token.repeat:
            route += f"((?:{token.pattern}){token.modifier})"
        else:
            route += f"({token.pattern}){token.modifier}"

    if end:
        if not strict:
            route += f"{delimiter_re}?"
        route += f"(?={ends_with_re})" if ends_with else "$"
    else:
        end_token = tokens[-1] if tokens else None
        if isinstance(end_token, str):
            is_end_delimited = end_token[-1] in delimiter
        else:
            is_end_delimited = end_token is None
        if not strict:
            route += f"(?:{delimiter_re}(?={ends_with_re}))?"
        if not is_end_delimited:
            route += f"(?={delimiter_re}|{ends_with_re})"

    return re.compile(route, 0 if sensitive else re.IGNORECASE)


def path_to_regexp(
    path: str,
    keys: list[Key] | None = None,
    *,
    sensitive: bool = False,
    strict: bool = False,
    start: bool = True,
    end: bool = True,
    delimiter: str = DEFAULT_DELIMITER,
    ends_with: str = "",
) -> re.Pattern[str]:
    """Compile a path template into a regular expression.

    Examples::

        keys = []
        regexp = path_to_regexp("/users/:id", keys)
        regexp.match("/users/42").groups()  -> ("42",)
        [k.name for k in keys]              -> ["id"]

    Matching is case insensitive unless ``sensitive``, tolerates a trailing
    delimiter unless ``strict``, and must consume the whole path unless
    ``end`` is false (prefix matching, used for mounted middleware).
    """
    tokens = parse(path, delimiter=delimiter)
    return tokens_to_regexp(
        tokens,
        keys,
        sensitive=sensitive,
        strict=strict,
        start=start,
        end=end,
        delimiter=delimiter,
        ends_with=ends_with,
    )


def compile(  # noqa: A001  - mirrors the compiler's public name
    path: str,
    *,
    encode: Callable[[str], str] | None = None,
    validate: bool = True,
    sensitive: bool = False,
) -> Callable[[Mapping[Any, object] | None], str]:
    """Compile a path template into a function that renders concrete paths.

    The returned function takes a mapping of parameter values. Raises
    ``TypeError`` for missing or wrongly typed values and ``ValueError`` for
    values that do not match their parameter's pattern.
    """
    return _tokens_to_function(
        parse(path), encode=encode, validate=validate, sensitive=sensitive
    )


def _tokens_to_function(
    tokens: Sequence[Token],
    *,
    encode: Callable[[str], str] | None,
    validate: bool,
    sensitive: bool,
) -> Callable[[Mapping[Any, object] | None], str]:
    flags = 0 if sensitive else re.IGNORECASE
    matches = [
        re.compile(f"^(?:{token.pattern})$", flags)
        if isinstance(token, Key) and token.pattern
        else None
        for token in tokens
    ]

    def render(data: Mapping[Any, object] | None = None) -> str:
        data = data or {}
        path = ""
        for token, matcher in zip(tokens, matches, strict=True):
            if isinstance(token, str):
                path += token
                continue

            value = data.get(token.name)
            # unnamed groups may be keyed by their index as a string
            if value is None and isinstance(token.name, int):
                value = data.get(str(token.name))

            if isinstance(value, list | tuple):
                if not token.repeat:
                    msg = f'Expected "{token.name}" to not repeat, but got an array'
                    raise TypeError(msg)
                if not value:
                    if token.optional:
                        continue
                    msg = f'Expected "{token.name}" to not be empty'
                    raise TypeError(msg)
                for item in value:
                    segment = _encode(str(item), encode)
                    _check(token, matcher, segment, validate)
                    path += token.prefix + segment + token.suffix
                continue

            if isinstance(value, str | int | float) and not isinstance(value, bool):
                segment = _encode(str(value), encode)
                _check(token, matcher, segment, validate)
                path += token.prefix + segment + token.suffix
                continue

            if token.optional:
                continue

            kind = "an array" if token.repeat else "a string"
            msg = f'Expected "{token.name}" to be {kind}'
            raise TypeError(msg)
        return path

    return render


def _encode(value: str, encode: Callable[[str], str] | None) -> str:
    return encode(value) if encode is not None else value


def _check(
    token: Key, matcher: re.Pattern[str] | None, segment: str, validate: bool
) -> None:
    if validate and matcher is not None and not matcher.match(segment):
        msg = (
            f'Expected "{token.name}" to match "{token.pattern}", '
            f'but got "{segment}"'
        )
        raise ValueError(msg)
