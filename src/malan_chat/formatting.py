"""Post-processing of assistant replies before they go back to the client.

Two steps, in order:

1. Code labelling. A reply that has no fenced block but looks like code is
   prefixed with a language label line and given a trailing newline. The
   label comes from :data:`LANGUAGE_RULES`, tested in order; the first rule
   whose pattern matches wins, even if a later rule would fit better. When
   no rule matches the reply is wrapped in bare newlines instead.
2. Line wrapping. Content lines longer than :data:`WRAP_WIDTH` are broken
   at whitespace. The label line added in step 1 is never wrapped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

WRAP_WIDTH = 80

FENCE_RE = re.compile(r"```.*?```", re.DOTALL)
CODE_LIKE_RE = re.compile(r"[{}();=]|^ {4,}", re.MULTILINE)


@dataclass(frozen=True)
class LanguageRule:
    label: str
    pattern: re.Pattern

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


LANGUAGE_RULES: Sequence[LanguageRule] = (
    LanguageRule("javascript", re.compile(r"const|let|var|function|class|import|console\.log")),
    LanguageRule("html", re.compile(r"<!DOCTYPE html|<html|<head|<body")),
    LanguageRule("python", re.compile(r"def |print\(|import |class ")),
    LanguageRule("sql", re.compile(r"SELECT|INSERT|UPDATE|DELETE|FROM|WHERE", re.IGNORECASE)),
)


def has_fence(text: str) -> bool:
    return FENCE_RE.search(text) is not None


def looks_like_code(text: str) -> bool:
    return CODE_LIKE_RE.search(text) is not None


def detect_language(text: str, rules: Sequence[LanguageRule] = LANGUAGE_RULES) -> Optional[str]:
    for rule in rules:
        if rule.matches(text):
            return rule.label
    return None


def wrap_line(line: str, width: int = WRAP_WIDTH) -> List[str]:
    """Break one line into chunks at whitespace.

    Each chunk holds up to ``width`` characters plus the single whitespace
    character it was broken on, so joining the chunks gives back the line.
    A run of more than ``width`` characters without whitespace is cut hard.
    """
    if len(line) <= width:
        return [line]
    chunk_re = re.compile(r".{1,%d}(?:\s|$)|.{%d}" % (width, width))
    return chunk_re.findall(line)


def wrap_text(text: str, width: int = WRAP_WIDTH) -> str:
    out: List[str] = []
    for line in text.split("\n"):
        out.extend(wrap_line(line, width))
    return "\n".join(out)


def format_reply(
    reply: str,
    *,
    rules: Sequence[LanguageRule] = LANGUAGE_RULES,
    width: int = WRAP_WIDTH,
) -> str:
    """Label code-like replies and hard-wrap long lines."""
    body = wrap_text(reply, width)
    if has_fence(reply) or not looks_like_code(reply):
        return body
    label = detect_language(reply, rules)
    if label is None:
        return "\n" + body + "\n"
    return label + "\n" + body + "\n"
