import pytest

from openrouter_structured.errors import ErrorKind, MalformedJsonError
from openrouter_structured.parsing import parse_json_content, strip_code_fences


@pytest.mark.parametrize(
    "raw",
    [
        '```json\n{"a":1}\n```',
        '```\n{"a":1}\n```',
        '  ```JSON\n{"a":1}```  ',
        '{"a":1}',
        '\n {"a":1} \n',
    ],
)
def test_fenced_and_bare_json_parse_identically(raw):
    assert parse_json_content(strip_code_fences(raw)) == {"a": 1}


def test_strip_code_fences_is_idempotent():
    once = strip_code_fences('```json\n{"a":1}\n```')
    assert once == '{"a":1}'
    assert strip_code_fences(once) == once


def test_strip_code_fences_keeps_inner_backticks():
    text = '```json\n{"code": "use ```x``` here"}\n```'
    assert parse_json_content(strip_code_fences(text)) == {"code": "use ```x``` here"}


def test_parse_json_content_rejects_prose():
    with pytest.raises(MalformedJsonError) as exc:
        parse_json_content("Sure! Here is the JSON you asked for.")
    assert exc.value.kind is ErrorKind.MALFORMED_JSON
    assert exc.value.raw_body == "Sure! Here is the JSON you asked for."
