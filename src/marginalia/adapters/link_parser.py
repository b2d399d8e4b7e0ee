"""Wiki-link extraction from note bodies.

Recognised syntax:
    [[Target]]            link, alias = target
    [[Target|Display]]    link with alias; first unescaped "|" separates
    ![[Target]]           embed
    \\|                   literal bar inside a target or alias

Fenced code blocks and inline code spans never contain links. Malformed spans
(unclosed, nested brackets, empty target, line break inside) are skipped and
scanning resumes right after the offending opener.
"""

import logging

from ..core.model import LinkToken, NoteId, ParseSkip
from ..core.ports import ParserStrategy

logger = logging.getLogger(__name__)

OPEN = "[["
CLOSE = "]]"
FENCE = "```"
SEPARATOR = "|"


def _skip_fence(text: str, i: int) -> int:
    """i points at an opening fence; return the index after the closing fence line."""
    close = text.find("\n" + FENCE, i + len(FENCE))
    if close == -1:
        return len(text)
    nl = text.find("\n", close + 1 + len(FENCE))
    return len(text) if nl == -1 else nl + 1


def _skip_inline_code(text: str, i: int) -> int:
    """i points at a backtick run; return the index after the matching run."""
    n = len(text)
    j = i
    while j < n and text[j] == "`":
        j += 1
    run = j - i
    k = j
    while k < n:
        if text[k] != "`":
            k += 1
            continue
        m = k
        while m < n and text[m] == "`":
            m += 1
        if m - k == run:
            return m
        k = m
    # unmatched backticks are literal
    return j


def _split_inner(inner: str) -> tuple[str, str | None] | None:
    """
    Split "target|alias" on the first unescaped bar and unescape both halves.
    Returns None when the span contains stray brackets.
    """
    parts: list[list[str]] = [[]]
    k = 0
    while k < len(inner):
        c = inner[k]
        if c == "\\" and k + 1 < len(inner) and inner[k + 1] in "\\|[]":
            parts[-1].append(inner[k + 1])
            k += 2
            continue
        if c in "[]":
            return None
        if c == SEPARATOR and len(parts) == 1:
            parts.append([])
        else:
            parts[-1].append(c)
        k += 1
    target = "".join(parts[0])
    alias = "".join(parts[1]) if len(parts) > 1 else None
    return target, alias


class MarkdownLinkParser(ParserStrategy):
    def parse(self, text: str, id: NoteId = "") -> list[LinkToken]:
        return self.scan(text, id)[0]

    def scan(self, text: str, id: NoteId = "") -> tuple[list[LinkToken], list[ParseSkip]]:
        """Tokens in document order plus the malformed spans that were skipped."""
        tokens: list[LinkToken] = []
        skips: list[ParseSkip] = []
        n = len(text)
        i = 0

        def skip(start: int, end: int, reason: str) -> None:
            skips.append(ParseSkip(start, end, reason))
            logger.debug("Skipping malformed link at %d-%d in %r: %s", start, end, id, reason)

        while i < n:
            if text.startswith(FENCE, i) and (i == 0 or text[i - 1] == "\n"):
                i = _skip_fence(text, i)
                continue

            c = text[i]
            if c == "`":
                i = _skip_inline_code(text, i)
                continue
            if c == "\\":
                # escaped character outside a link, e.g. "\[["
                i += 2
                continue
            if not text.startswith(OPEN, i):
                i += 1
                continue

            embed = i > 0 and text[i - 1] == "!"
            start = i - 1 if embed else i
            k = i + len(OPEN)
            while k < n:
                if text[k] == "\\":
                    k += 2
                    continue
                if text.startswith(CLOSE, k) or text.startswith(OPEN, k) or text[k] == "\n":
                    break
                k += 1

            if k >= n:
                skip(start, n, "unclosed link")
                i += len(OPEN)
                continue
            if text.startswith(OPEN, k):
                skip(start, k, "nested link opener")
                i = k
                continue
            if text[k] == "\n":
                skip(start, k, "line break inside link")
                i = k
                continue

            end = k + len(CLOSE)
            split = _split_inner(text[i + len(OPEN) : k])
            if split is None:
                skip(start, end, "stray bracket inside link")
                i += 1
                continue

            target, alias = split
            target = target.strip()
            if not target:
                skip(start, end, "empty target")
                i = end
                continue

            alias = alias.strip() if alias is not None else ""
            tokens.append(
                LinkToken(
                    source_note_id=id,
                    raw_target=target,
                    alias=alias or target,
                    span_start=start,
                    span_end=end,
                    embed=embed,
                )
            )
            i = end

        return tokens, skips
