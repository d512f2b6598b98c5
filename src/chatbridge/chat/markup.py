"""Escaping for Telegram MarkdownV2.

Agent output is loosely formatted markdown; Telegram rejects any message whose
MarkdownV2 has an unescaped reserved character. ``sanitize_markdown`` makes the
text valid while keeping code blocks, inline code and links working.
"""

import re

SPECIAL_CHARACTERS = r"_*\[\]()~`>#+\-=|{}.!"

_MULTILINE_CODE = r"(?:(?<=\n)|^)```.*\n?((?:.|\n)*?)(?:\n```)"
_INLINE_CODE = r"(`.*?`)"
_LINK = r"\[(.*?)\]\((.*?)\)"
_SPECIAL = rf"([{SPECIAL_CHARACTERS}])"

# Alternation order is the priority when candidates overlap.
_TOKEN_RE = re.compile("|".join((_MULTILINE_CODE, _INLINE_CODE, _LINK, _SPECIAL)))
_SPECIAL_RE = re.compile(_SPECIAL)


def escape_special(text: str) -> str:
    """Prefix every reserved character with a backslash."""
    return _SPECIAL_RE.sub(r"\\\1", text)


def _splice(match: re.Match, group: int, replacement: str) -> str:
    whole = match.group(0)
    start = match.start(group) - match.start(0)
    end = match.end(group) - match.start(0)
    return whole[:start] + replacement + whole[end:]


def _replace(match: re.Match) -> str:
    code_body, inline_code, label, url, special = match.groups()

    if code_body:
        return _splice(match, 1, code_body.replace("`", "\\`"))
    if inline_code:
        return inline_code
    if label and url:
        return _splice(match, 3, escape_special(label))
    if special:
        return "\\" + special
    return match.group(0)


def sanitize_markdown(text: str) -> str:
    """Sanitize markdown for Telegram MarkdownV2 in a single left-to-right pass.

    - fenced code blocks keep their fences; backticks in the body are escaped
    - inline code spans pass through untouched
    - link labels are escaped, destinations left as they are
    - any other reserved character is escaped
    """
    return _TOKEN_RE.sub(_replace, text)
