import re
from typing import List, Literal, NamedTuple

SpanKind = Literal["unchanged", "added", "removed"]

BULLET_RE = re.compile(r"^\s*([-*•]|\d+\.)\s+")


class Span(NamedTuple):
    kind: SpanKind
    text: str

    def to_dict(self):
        return {"kind": self.kind, "text": self.text}


def render(original: str, improved: str) -> List[Span]:
    """
    Word-level review diff between an edit's original and improved text.

    Greedy two-cursor walk over whitespace tokens: equal tokens are
    unchanged, otherwise the improved side is consumed as added while it
    has tokens left, then the rest of the original as removed. There is no
    backtracking, so this is a display aid only and nothing is ever
    patched from it.
    """
    old_words = (original or "").split()
    new_words = (improved or "").split()
    spans: List[Span] = []
    i = j = 0
    while i < len(old_words) or j < len(new_words):
        if i < len(old_words) and j < len(new_words) and old_words[i] == new_words[j]:
            spans.append(Span("unchanged", old_words[i]))
            i += 1
            j += 1
        elif j < len(new_words):
            spans.append(Span("added", new_words[j]))
            j += 1
        else:
            spans.append(Span("removed", old_words[i]))
            i += 1
    return spans


def _bullet_lines(text: str) -> List[str]:
    return [line.strip() for line in (text or "").splitlines() if line.strip()]


def is_bullet_block(text: str) -> bool:
    lines = _bullet_lines(text)
    return len(lines) > 1 and all(BULLET_RE.match(line) for line in lines)


def render_bullets(original: str, improved: str) -> List[Span]:
    """
    Line-level diff for bullet lists; anything else goes to `render`.

    Lines on both sides are unchanged, lines only in the improved list are
    added, lines only in the original list are removed (listed last).
    """
    if not (is_bullet_block(original) and is_bullet_block(improved)):
        return render(original, improved)

    old_lines = _bullet_lines(original)
    new_lines = _bullet_lines(improved)
    old_set = set(old_lines)
    new_set = set(new_lines)

    spans = [Span("unchanged" if line in old_set else "added", line) for line in new_lines]
    spans.extend(Span("removed", line) for line in old_lines if line not in new_set)
    return spans
