import pytest
from lsprotocol.types import (
    MarkedStringWithLanguage,
    MarkupContent,
    MarkupKind,
    ParameterInformation,
    Position,
    Range,
    SignatureHelp,
    SignatureInformation,
    TextEdit,
)

from lspbridge.lsp.formatting import (
    format_contents,
    format_signature_help,
    is_empty_documentation,
    is_markup_content,
    is_text_edit,
    remove_empty_code_fences,
)


def markdown(value):
    return MarkupContent(kind=MarkupKind.Markdown, value=value)


class TestFormatContents:
    """Tests for format_contents."""

    def test_none(self):
        assert format_contents(None) == ""

    def test_string(self):
        assert format_contents("plain **text**") == "plain **text**"

    def test_plaintext_markup_is_raw(self):
        content = MarkupContent(kind=MarkupKind.PlainText, value="  raw <b>  ")

        assert format_contents(content, lambda md: "rendered") == "  raw <b>  "

    def test_markdown_is_trimmed_and_rendered(self):
        rendered = format_contents(markdown("  # Title  "), lambda md: f"<h1>{md}</h1>")

        assert rendered == "<h1># Title</h1>"

    def test_markdown_without_renderer(self):
        assert format_contents(markdown("*hi*")) == "*hi*"

    def test_markdown_empty_fences_removed(self):
        assert format_contents(markdown("```python\n```\nDocs")) == "Docs"

    def test_language_tagged_string_is_dropped(self):
        assert format_contents(MarkedStringWithLanguage(language="python", value="x = 1")) == ""

    def test_list_joins_non_empty_parts(self):
        contents = [
            "first string",
            MarkedStringWithLanguage(language="python", value="x"),
            "",
            markdown("second"),
        ]

        assert format_contents(contents) == "first string\n\nsecond"

    def test_list_with_only_tagged_string(self):
        contents = ["first string", MarkedStringWithLanguage(language="python", value="x")]

        assert format_contents(contents) == "first string"

    def test_dict_markup(self):
        assert format_contents({"kind": "plaintext", "value": "text"}) == "text"


def test_remove_empty_code_fences():
    assert remove_empty_code_fences("a\n```\n\n```\nb") == "a\nb"
    assert remove_empty_code_fences("```py\ncode\n```") == "```py\ncode\n```"


class TestIsEmptyDocumentation:
    """Tests for is_empty_documentation."""

    @pytest.mark.parametrize(
        "contents",
        [
            None,
            "",
            "   ",
            "```",
            "``` \n ```",
            markdown(""),
            markdown("```\n```"),
            MarkedStringWithLanguage(language="python", value=""),
            [],
            ["", markdown(" ")],
        ],
    )
    def test_empty(self, contents):
        assert is_empty_documentation(contents) is True

    @pytest.mark.parametrize(
        "contents",
        [
            "docs",
            markdown("**docs**"),
            MarkedStringWithLanguage(language="python", value="x"),
            ["", "docs"],
            {"kind": "markdown", "value": "docs"},
        ],
    )
    def test_not_empty(self, contents):
        assert is_empty_documentation(contents) is False


def test_type_guards():
    edit = TextEdit(
        range=Range(start=Position(line=0, character=0), end=Position(line=0, character=0)),
        new_text="x",
    )

    assert is_text_edit(edit) is True
    assert is_text_edit(markdown("x")) is False
    assert is_markup_content(markdown("x")) is True
    assert is_markup_content({"kind": "markdown", "value": "x"}) is True
    assert is_markup_content("x") is False


class TestFormatSignatureHelp:
    """Tests for format_signature_help."""

    def test_none(self):
        assert format_signature_help(None) == ""
        assert format_signature_help(SignatureHelp(signatures=[])) == ""

    def test_active_signature_and_parameter(self):
        help_ = SignatureHelp(
            signatures=[
                SignatureInformation(label="f()"),
                SignatureInformation(
                    label="g(a, b)",
                    documentation="Adds things",
                    parameters=[
                        ParameterInformation(label="a"),
                        ParameterInformation(label=(5, 6), documentation="second value"),
                    ],
                ),
            ],
            active_signature=1,
            active_parameter=1,
        )

        assert format_signature_help(help_) == "g(a, b)\n\nb: second value\n\nAdds things"

    def test_out_of_range_active_signature(self):
        help_ = SignatureHelp(signatures=[SignatureInformation(label="f()")], active_signature=3)

        assert format_signature_help(help_) == "f()"
