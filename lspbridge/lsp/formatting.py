"""
Helpers turning LSP content payloads (hover contents, documentation) into
text the editor can display.
"""

from __future__ import annotations

import re
from typing import Any, Callable

from lsprotocol.types import MarkupContent, MarkupKind

MarkupRenderer = Callable[[str], str]

_EMPTY_FENCE = re.compile(r"```[^\n`]*\n\s*```\n?")
_ONLY_BACKTICKS = re.compile(r"^[\s`]*$")


def _identity(text: str) -> str:
    return text


def is_markup_content(obj: Any) -> bool:
    return isinstance(obj, MarkupContent) or (
        isinstance(obj, dict) and "kind" in obj and "value" in obj
    )


def is_text_edit(obj: Any) -> bool:
    return hasattr(obj, "range") and hasattr(obj, "new_text")


def _is_marked_string(obj: Any) -> bool:
    return hasattr(obj, "language") and hasattr(obj, "value")


def remove_empty_code_fences(markdown: str) -> str:
    """Drop fenced code blocks that contain nothing but whitespace."""
    return _EMPTY_FENCE.sub("", markdown)


def format_contents(contents: Any, render_markup: MarkupRenderer | None = None) -> str:
    """
    Flatten hover or documentation contents into a single string.

    Markdown is trimmed, cleaned of empty code fences and passed through
    ``render_markup``; plaintext and bare strings are returned as they are.
    Language-tagged marked strings carry no prose and yield an empty string.
    """
    render = render_markup or _identity

    if contents is None:
        return ""

    if isinstance(contents, str):
        return contents

    if isinstance(contents, (list, tuple)):
        parts = (format_contents(part, render) for part in contents)
        return "\n\n".join(part for part in parts if part)

    if isinstance(contents, dict):
        if "kind" in contents:
            contents = MarkupContent(kind=contents["kind"], value=contents.get("value", ""))
        else:
            return ""

    if isinstance(contents, MarkupContent):
        if contents.kind == MarkupKind.Markdown:
            return render(remove_empty_code_fences(contents.value.strip()))
        return contents.value

    return ""


def _is_empty_text(value: Any) -> bool:
    return not isinstance(value, str) or bool(_ONLY_BACKTICKS.match(value))


def is_empty_documentation(contents: Any) -> bool:
    """True if ``contents`` would render as nothing worth showing."""
    if contents is None:
        return True
    if isinstance(contents, str):
        return _is_empty_text(contents)
    if isinstance(contents, (list, tuple)):
        return all(is_empty_documentation(part) for part in contents)
    if isinstance(contents, dict):
        return _is_empty_text(contents.get("value"))
    if isinstance(contents, MarkupContent) or _is_marked_string(contents):
        return _is_empty_text(contents.value)
    return False


def format_signature_help(help_: Any, render_markup: MarkupRenderer | None = None) -> str:
    """
    Render the active signature of a SignatureHelp result.

    The signature label comes first, then the active parameter's
    documentation (if any), then the signature's documentation.
    """
    if help_ is None or not help_.signatures:
        return ""

    index = help_.active_signature or 0
    if index >= len(help_.signatures):
        index = 0
    signature = help_.signatures[index]
    parts = [signature.label]

    active = signature.active_parameter
    if active is None:
        active = help_.active_parameter
    if signature.parameters and active is not None and active < len(signature.parameters):
        parameter = signature.parameters[active]
        label = parameter.label
        if isinstance(label, (list, tuple)):
            label = signature.label[label[0] : label[1]]
        parameter_doc = format_contents(parameter.documentation, render_markup)
        if parameter_doc:
            parts.append(f"{label}: {parameter_doc}")

    signature_doc = format_contents(signature.documentation, render_markup)
    if signature_doc:
        parts.append(signature_doc)

    return "\n\n".join(parts)
