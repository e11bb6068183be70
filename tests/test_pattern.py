from urllib.parse import quote

import pytest

from stackmux.errors import PatternError
from stackmux.pattern import Key, compile, parse, path_to_regexp


# --- parse ---------------------------------------------------------------------
def test_parse_named_param() -> None:
    tokens = parse("/users/:id")
    assert tokens[0] == "/users"
    key = tokens[1]
    assert isinstance(key, Key)
    assert key.name == "id"
    assert key.prefix == "/"
    assert key.modifier == ""


def test_parse_unnamed_params_are_numbered() -> None:
    tokens = parse("/files/(.*)/(\\d+)")
    keys = [t for t in tokens if isinstance(t, Key)]
    assert [k.name for k in keys] == [0, 1]
    assert keys[0].pattern == ".*"
    assert keys[1].pattern == "\\d+"


def test_parse_group_with_modifier() -> None:
    tokens = parse("/book{/:chapter}?")
    assert tokens[0] == "/book"
    key = tokens[1]
    assert isinstance(key, Key)
    assert key.name == "chapter"
    assert key.prefix == "/"
    assert key.optional
    assert not key.repeat


def test_parse_escaped_characters_are_literal() -> None:
    assert parse("/a\\:b") == ["/a:b"]


def test_parse_non_prefix_char_stays_literal() -> None:
    tokens = parse("/files-:name")
    assert tokens[0] == "/files-"
    key = tokens[1]
    assert isinstance(key, Key)
    assert key.prefix == ""


@pytest.mark.parametrize(
    "template,message",
    [
        ("/:", "Missing parameter name"),
        ("/(", "Unbalanced pattern"),
        ("/()", "Missing pattern"),
        ("/(?x)", 'Pattern cannot start with "?"'),
        ("/((a))", "Capturing groups are not allowed"),
        ("/a\\", "Unterminated escape"),
        ("/{:a", "expected CLOSE"),
    ],
)
def test_parse_malformed(template: str, message: str) -> None:
    with pytest.raises(PatternError, match=message):
        parse(template)


def test_pattern_error_is_value_error() -> None:
    with pytest.raises(ValueError):
        path_to_regexp("/:")


# --- path_to_regexp ------------------------------------------------------------
def test_regexp_captures_and_keys() -> None:
    keys: list[Key] = []
    regexp = path_to_regexp("/users/:id/books/:book", keys)
    match = regexp.match("/users/1/books/2")
    assert match is not None
    assert match.groups() == ("1", "2")
    assert [k.name for k in keys] == ["id", "book"]


def test_regexp_trailing_slash() -> None:
    assert path_to_regexp("/a").match("/a/")
    assert not path_to_regexp("/a", strict=True).match("/a/")


def test_regexp_case_sensitivity() -> None:
    assert path_to_regexp("/About").match("/about")
    assert not path_to_regexp("/About", sensitive=True).match("/about")


def test_regexp_prefix_match() -> None:
    regexp = path_to_regexp("/api", end=False)
    assert regexp.match("/api")
    assert regexp.match("/api/users")
    assert not regexp.match("/apix")


def test_regexp_optional_group() -> None:
    regexp = path_to_regexp("/book{/:chapter}?")
    match = regexp.match("/book")
    assert match is not None
    assert match.groups() == (None,)
    match = regexp.match("/book/3")
    assert match is not None
    assert match.groups() == ("3",)


def test_regexp_repeat() -> None:
    match = path_to_regexp("/tags/:tag+").match("/tags/a/b")
    assert match is not None
    assert match.groups() == ("a/b",)
    assert not path_to_regexp("/tags/:tag+").match("/tags")
    assert path_to_regexp("/tags/:tag*").match("/tags")


def test_regexp_custom_pattern() -> None:
    regexp = path_to_regexp("/:lang(en|fr)/docs")
    assert regexp.match("/en/docs")
    assert not regexp.match("/de/docs")


def test_regexp_catch_all() -> None:
    regexp = path_to_regexp("(.*)", end=False)
    assert regexp.match("/anything/at/all")
    assert regexp.match("")


# --- compile -------------------------------------------------------------------
def test_compile_renders_params() -> None:
    assert compile("/users/:id")({"id": 7}) == "/users/7"


def test_compile_unnamed_group_by_index_or_string() -> None:
    render = compile("/files/(\\d+)")
    assert render({0: "12"}) == "/files/12"
    assert render({"0": "12"}) == "/files/12"


def test_compile_missing_param() -> None:
    with pytest.raises(TypeError, match='Expected "id" to be a string'):
        compile("/users/:id")({})


def test_compile_invalid_value() -> None:
    with pytest.raises(ValueError, match='Expected "n" to match'):
        compile("/:n(\\d+)")({"n": "x"})


def test_compile_validation_can_be_disabled() -> None:
    assert compile("/:n(\\d+)", validate=False)({"n": "x"}) == "/x"


def test_compile_repeat() -> None:
    render = compile("/tags/:tag+")
    assert render({"tag": ["a", "b"]}) == "/tags/a/b"
    with pytest.raises(TypeError, match="to not be empty"):
        render({"tag": []})


def test_compile_list_for_non_repeating_param() -> None:
    with pytest.raises(TypeError, match="to not repeat"):
        compile("/users/:id")({"id": ["1", "2"]})


def test_compile_optional_omitted() -> None:
    assert compile("/book{/:chapter}?")({}) == "/book"
    assert compile("/book{/:chapter}?")(None) == "/book"


def test_compile_encode() -> None:
    render = compile("/q/:v", encode=lambda s: quote(s, safe=""))
    assert render({"v": "a b"}) == "/q/a%20b"
