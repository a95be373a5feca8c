"""Best-effort repair of malformed JSON frames.

Each pass is a pure ``str -> (str, changed)`` function so it can be tested
on its own. ``repair`` runs them in order; nothing here is a real parser,
so a repaired text may still be invalid and callers must parse it again.
``safe_parse`` is the entry point for callers that just want a value.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

PassResult = Tuple[str, bool]
RepairPass = Callable[[str], PassResult]

_SMART_QUOTES = re.compile("[\u201c\u201d\u201e\u201f\u2033]")
_SINGLE_QUOTED = re.compile(r"'([^']*)'")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_BRACE_GAP = re.compile(r"}\s*{")
_BRACKET_GAP = re.compile(r"]\s*\[")
# A string closing right before another opening one; the lookahead keeps
# empty strings such as ``"a": ""`` intact
_STRING_GAP = re.compile(r'"\s*"(?=\s*[^\s:,}\]])')
_STRING_THEN_OBJECT = re.compile(r'"\s*{')
_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")
# A lone backslash in front of a quote that ends a string
_BACKSLASH_TERMINATOR = re.compile(r'(?<!\\)\\"(?=\s*(?:[,:}\]]|$))')
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_$][\w$]*)(\s*:)")
# "word"word" followed by a value terminator
_QUOTE_IN_STRING = re.compile(r'"([^"\\:,{}\[\]]*)"([^"\s:,{}\[\]][^":,{}\[\]]*)"(?=\s*[,}\]])')

_CLOSERS = {"{": "}", "[": "]"}
_TERMINATOR_CHARS = ",:}]"
_JSON_WHITESPACE = "\t\n\r"


def _is_valid(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def _changed(before: str, after: str) -> PassResult:
    return after, after != before


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------


def normalize_smart_quotes(text: str) -> PassResult:
    return _changed(text, _SMART_QUOTES.sub('"', text))


def convert_single_quotes(text: str) -> PassResult:
    """Turn single-quoted strings into double-quoted ones.

    Only applied when the text looks like it uses single quotes as
    delimiters, so apostrophes in prose survive.
    """
    if "'" not in text or not any(p in text for p in ("':", "','", "'}")):
        return text, False
    return _changed(text, _SINGLE_QUOTED.sub(r'"\1"', text))


def strip_trailing_commas(text: str) -> PassResult:
    return _changed(text, _TRAILING_COMMA.sub(r"\1", text))


def insert_missing_commas(text: str) -> PassResult:
    fixed = _BRACE_GAP.sub("},{", text)
    fixed = _BRACKET_GAP.sub("],[", fixed)
    fixed = _STRING_GAP.sub('","', fixed)
    fixed = _STRING_THEN_OBJECT.sub('",{', fixed)
    return _changed(text, fixed)


def escape_control_characters(text: str) -> PassResult:
    """Escape raw control characters as ``\\u00XX``.

    Outside strings, tab, newline and carriage return are JSON whitespace
    and are kept.
    """
    if not _CONTROL_CHARS.search(text):
        return text, False

    out: List[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True

        if ord(ch) < 0x20 and (in_string or ch not in _JSON_WHITESPACE):
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(ch)
    return _changed(text, "".join(out))


def escape_backslash_before_quote(text: str) -> PassResult:
    return _changed(text, _BACKSLASH_TERMINATOR.sub(r'\\\\"', text))


def trim_trailing_content(text: str) -> PassResult:
    """Drop anything after the last closer that ends a top-level value.

    Text that never returns to depth 0 is left alone; it is truncated,
    not padded, and ``balance_brackets`` closes it later.
    """
    depth = 0
    last = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            depth += 1
        elif ch in "}]" and depth:
            depth -= 1
            if depth == 0:
                last = i

    if last == -1 or not text[last + 1:].strip():
        return text, False
    logger.debug("Removing trailing content after JSON: %r", text[last + 1:].strip()[:50])
    return text[: last + 1], True


def quote_bare_keys(text: str) -> PassResult:
    return _changed(text, _BARE_KEY.sub(r'\1"\2"\3', text))


def escape_inner_quotes(text: str) -> PassResult:
    """Escape quotes inside strings that cannot be string terminators.

    A quote counts as a terminator when the next non-whitespace character
    is ``,``, ``:``, ``}``, ``]`` or the end of the text.
    """
    out: List[str] = []
    in_string = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if not in_string:
            if ch == '"':
                in_string = True
            out.append(ch)
        elif ch == "\\" and i + 1 < n:
            out.append(text[i: i + 2])
            i += 2
            continue
        elif ch == '"':
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j == n or text[j] in _TERMINATOR_CHARS:
                in_string = False
                out.append(ch)
            else:
                out.append('\\"')
        else:
            out.append(ch)
        i += 1
    return _changed(text, "".join(out))


def balance_brackets(text: str) -> PassResult:
    """Close an unterminated string and any unclosed braces or brackets."""
    stack: List[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "}]" and stack and stack[-1] == ch:
            stack.pop()

    suffix = ('"' if in_string else "") + "".join(reversed(stack))
    return _changed(text, text + suffix)


def repair_quote_in_string(text: str) -> PassResult:
    """Second chance for the common ``"it"s broken"`` shape."""
    return _changed(text, _QUOTE_IN_STRING.sub(r'"\1\\"\2"', text))


REPAIR_PASSES: Tuple[Tuple[str, RepairPass], ...] = (
    ("normalize_smart_quotes", normalize_smart_quotes),
    ("convert_single_quotes", convert_single_quotes),
    ("strip_trailing_commas", strip_trailing_commas),
    ("insert_missing_commas", insert_missing_commas),
    ("escape_control_characters", escape_control_characters),
    ("escape_backslash_before_quote", escape_backslash_before_quote),
    ("trim_trailing_content", trim_trailing_content),
    ("quote_bare_keys", quote_bare_keys),
    ("escape_inner_quotes", escape_inner_quotes),
    ("balance_brackets", balance_brackets),
)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def repair(raw: str) -> str:
    """Return a best-effort repaired version of *raw*. Never raises.

    Valid input is returned unchanged. The result is not guaranteed to
    parse.
    """
    if not isinstance(raw, str) or not raw or _is_valid(raw):
        return raw

    text = raw
    applied: List[str] = []
    for name, repair_pass in REPAIR_PASSES:
        text, changed = repair_pass(text)
        if changed:
            applied.append(name)
    if _is_valid(text):
        logger.debug("JSON sanitization successful (%s)", ", ".join(applied))
        return text

    second, changed = repair_quote_in_string(text)
    if changed and _is_valid(second):
        logger.debug("Applied second-chance repair for unescaped quotes")
        return second

    keys_only, changed = quote_bare_keys(raw)
    if changed and _is_valid(keys_only):
        logger.debug("Bare-key repair of the original text succeeded")
        return keys_only

    logger.debug("JSON sanitization failed after passes: %s", ", ".join(applied) or "none")
    return second


def safe_parse(text: str) -> Optional[Any]:
    """Decode *text*, repairing it first if needed; ``None`` on failure."""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        pass
    try:
        return json.loads(repair(text))
    except (TypeError, ValueError) as e:
        logger.debug("Safe JSON parse failed even after sanitization: %s", e)
        return None
