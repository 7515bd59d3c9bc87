from collections import Counter
from typing import AbstractSet, Dict, List, Sequence

from models import LocatedEdit, SuggestedEdit


def _accepted_edits(edits: Sequence[SuggestedEdit], accepted: AbstractSet[int]) -> List[SuggestedEdit]:
    return [edit for index, edit in enumerate(edits) if index in accepted]


def patch(lines: Sequence[str], edits: Sequence[SuggestedEdit], accepted: AbstractSet[int]) -> str:
    """
    Apply accepted edits to the document lines and rejoin them.

    Lines are matched on their trimmed text. Every line whose trimmed text
    equals an accepted edit's trimmed originalText is replaced, so repeated
    lines in the document all receive the same replacement. With several
    accepted edits for the same text, the later edit wins.
    """
    replacements: Dict[str, str] = {}
    for edit in _accepted_edits(edits, accepted):
        replacements[edit.original_text.strip()] = edit.improved_text

    return "\n".join(replacements.get(line.strip(), line) for line in lines)


# ===================== POSITIONAL EDITS =====================

def locate_edits(lines: Sequence[str], edits: Sequence[SuggestedEdit]) -> List[LocatedEdit]:
    """
    Pin each edit to one line index.

    Each edit takes the first line with matching trimmed text that no
    earlier edit has claimed. Edits that match no free line are left out.
    """
    claimed = set()
    located: List[LocatedEdit] = []
    for edit in edits:
        key = edit.original_text.strip()
        for index, line in enumerate(lines):
            if index not in claimed and line.strip() == key:
                claimed.add(index)
                located.append(
                    LocatedEdit(line_index=index, original_text=edit.original_text, improved_text=edit.improved_text)
                )
                break
    return located


def patch_located(lines: Sequence[str], located: Sequence[LocatedEdit]) -> str:
    """
    Positional patch: each edit touches only its own line.

    An edit whose index is out of range, or whose line no longer matches
    its originalText, is skipped.
    """
    patched = list(lines)
    for edit in located:
        if 0 <= edit.line_index < len(patched) and patched[edit.line_index].strip() == edit.original_text.strip():
            patched[edit.line_index] = edit.improved_text
    return "\n".join(patched)


def find_ambiguous_edits(
    lines: Sequence[str], edits: Sequence[SuggestedEdit], accepted: AbstractSet[int]
) -> List[int]:
    """Indices of accepted edits whose original text occurs on more than one line."""
    counts = Counter(line.strip() for line in lines)
    return [
        index
        for index, edit in enumerate(edits)
        if index in accepted and counts[edit.original_text.strip()] > 1
    ]
