"""Pull a one-time code out of whatever the user typed or pasted.

Matchers are tried in order and the first hit wins. Matching is purely
textual: the link's scheme and domain are never inspected.
"""

import re
from collections.abc import Callable

CODE_LENGTH = 6

TokenMatcher = Callable[[str], str | None]

_WHITESPACE_RE = re.compile(r"\s+")
_ALNUM_RE = re.compile(r"^[A-Za-z0-9]+$")


def _query_param_matcher(name: str, length: int = CODE_LENGTH) -> TokenMatcher:
    # Not preceded by a word character, so "access_token=" never matches "token=".
    pattern = re.compile(rf"(?<![A-Za-z0-9_]){re.escape(name)}=([A-Za-z0-9]{{{length}}})")

    def match(text: str) -> str | None:
        found = pattern.search(text)
        return found.group(1) if found else None

    return match


def _bare_run_matcher(length: int = CODE_LENGTH) -> TokenMatcher:
    pattern = re.compile(rf"[A-Za-z0-9]{{{length}}}")

    def match(text: str) -> str | None:
        found = pattern.search(text)
        return found.group(0) if found else None

    return match


def build_matchers(length: int = CODE_LENGTH) -> list[TokenMatcher]:
    return [
        _query_param_matcher("token", length),
        _query_param_matcher("confirmation_token", length),
        _bare_run_matcher(length),
    ]


DEFAULT_MATCHERS = build_matchers()


def extract_token(text: str, matchers: list[TokenMatcher] = DEFAULT_MATCHERS) -> str | None:
    for matcher in matchers:
        token = matcher(text)
        if token is not None:
            return token
    return None


def code_from_input(text: str, *, length: int = CODE_LENGTH) -> str | None:
    """Return a complete code from user input, or ``None`` if there is none yet.

    Short input is a typed code (spaces ignored); anything longer is treated
    as a pasted link or message and goes through the matchers.
    """
    compact = _WHITESPACE_RE.sub("", text)
    if len(compact) <= length:
        if len(compact) == length and _ALNUM_RE.match(compact):
            return compact
        return None
    matchers = DEFAULT_MATCHERS if length == CODE_LENGTH else build_matchers(length)
    return extract_token(text, matchers)
