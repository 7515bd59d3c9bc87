import uuid
from collections import OrderedDict
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple

from diff_view import Span, render_bullets
from errors import ReviewError
from log_utils import get_logger
from models import OptimizationResult, Score, SuggestedEdit
from patcher import find_ambiguous_edits, patch

LOGGER = get_logger("review")

MAX_SESSIONS = 200


class EditStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ReviewState:
    """
    Accept/reject status for each index of the currently loaded edit list.

    Loading a new list resets every index to accepted. Nothing derived
    from the statuses is cached here; the patched text and diffs are
    computed from `accepted` each time they are asked for.
    """

    def __init__(self) -> None:
        self._statuses: List[EditStatus] = []

    def load(self, count: int) -> None:
        self._statuses = [EditStatus.ACCEPTED] * count

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._statuses):
            raise ReviewError(f"Edit index {index} is out of range (0..{len(self._statuses) - 1})", 400)

    def toggle(self, index: int) -> EditStatus:
        self._check_index(index)
        current = self._statuses[index]
        new = EditStatus.REJECTED if current == EditStatus.ACCEPTED else EditStatus.ACCEPTED
        self._statuses[index] = new
        return new

    def accept_all(self) -> None:
        self._statuses = [EditStatus.ACCEPTED] * len(self._statuses)

    def reject_all(self) -> None:
        self._statuses = [EditStatus.REJECTED] * len(self._statuses)

    @property
    def statuses(self) -> List[EditStatus]:
        return list(self._statuses)

    @property
    def accepted(self) -> FrozenSet[int]:
        return frozenset(i for i, status in enumerate(self._statuses) if status == EditStatus.ACCEPTED)

    def __len__(self) -> int:
        return len(self._statuses)


class ReviewSession:
    """
    One user's optimize/review loop over one document.

    `lines` is the text the current edits were generated against: the
    uploaded document at first, the patched text after a recalculation.
    Edits accepted in earlier rounds are kept in `committed_edits` so the
    final document still receives them.
    """

    def __init__(
        self,
        session_id: str,
        lines: Sequence[str],
        job_description: str,
        structured_data: Optional[Any] = None,
    ) -> None:
        self.session_id = session_id
        self.original_lines: List[str] = list(lines)
        self.lines: List[str] = list(lines)
        self.job_description = job_description
        self.structured_data = structured_data
        self.result: Optional[OptimizationResult] = None
        self.state = ReviewState()
        self.score_history: List[Score] = []
        self.committed_edits: List[SuggestedEdit] = []
        self._issued = 0
        self._applied = 0
        self._in_flight: set = set()

    # ===================== REQUEST SEQUENCING =====================

    @contextmanager
    def action(self, name: str) -> Iterator[int]:
        """
        Mark `name` as running for the duration of the block and yield a
        sequence ticket for its result. A second `name` while the first is
        still running is refused with 409.
        """
        if name in self._in_flight:
            raise ReviewError(f"A {name} request is already in progress for this session", 409)
        self._in_flight.add(name)
        self._issued += 1
        try:
            yield self._issued
        finally:
            self._in_flight.discard(name)

    def is_busy(self, name: str) -> bool:
        return name in self._in_flight

    def apply_result(
        self,
        ticket: int,
        result: OptimizationResult,
        patched_lines: Optional[Sequence[str]] = None,
        committed: Sequence[SuggestedEdit] = (),
        restart: bool = False,
    ) -> bool:
        """
        Make `result` current unless a newer ticket was applied already.

        Returns False when the result is stale and was dropped.
        `patched_lines` and `committed` come from `commit_snapshot()` taken
        when a recalculation was issued: that text becomes the working text
        and those edits the committed ones, whatever landed in between.
        `restart` goes back to the uploaded document and forgets committed
        edits.
        """
        if ticket < self._applied:
            LOGGER.info("result_discarded_stale", session=self.session_id, ticket=ticket, applied=self._applied)
            return False

        if restart:
            self.committed_edits = []
            self.lines = list(self.original_lines)
        elif patched_lines is not None:
            self.committed_edits = list(committed)
            self.lines = list(patched_lines)
        self._applied = ticket
        self.result = result
        self.state.load(len(result.suggested_edits))
        if result.match_score is not None:
            self.score_history.append(result.match_score)
        return True

    # ===================== DERIVED VIEWS =====================

    @property
    def edits(self) -> List[SuggestedEdit]:
        return list(self.result.suggested_edits) if self.result else []

    def accepted_edits(self) -> List[SuggestedEdit]:
        accepted = self.state.accepted
        return [edit for i, edit in enumerate(self.edits) if i in accepted]

    def patched_text(self) -> str:
        return patch(self.lines, self.edits, self.state.accepted)

    def commit_snapshot(self) -> Tuple[List[str], List[SuggestedEdit]]:
        """Patched non-empty lines and every edit they contain, as of right now."""
        patched = [line for line in self.patched_text().splitlines() if line.strip()]
        return patched, self.committed_edits + self.accepted_edits()

    def ambiguous_edits(self) -> List[int]:
        return find_ambiguous_edits(self.lines, self.edits, self.state.accepted)

    def diff(self, index: int) -> List[Span]:
        edits = self.edits
        if not 0 <= index < len(edits):
            raise ReviewError(f"Edit index {index} is out of range (0..{len(edits) - 1})", 400)
        edit = edits[index]
        return render_bullets(edit.original_text, edit.improved_text)

    def snapshot(self) -> Dict[str, Any]:
        ambiguous = self.ambiguous_edits()
        payload: Dict[str, Any] = {
            "sessionId": self.session_id,
            "result": self.result.to_response() if self.result else None,
            "statuses": [s.value for s in self.state.statuses],
            "acceptedEdits": sorted(self.state.accepted),
            "patchedText": self.patched_text(),
            "scoreHistory": list(self.score_history),
            "ambiguousEdits": ambiguous,
        }
        if ambiguous:
            payload["warning"] = (
                "Some accepted edits match more than one line of your CV; "
                "every matching line will be replaced."
            )
        return payload


class SessionStore:
    """In-memory review sessions, oldest evicted first once full."""

    def __init__(self, max_sessions: int = MAX_SESSIONS) -> None:
        self._sessions: "OrderedDict[str, ReviewSession]" = OrderedDict()
        self._max_sessions = max_sessions

    def create(
        self,
        lines: Sequence[str],
        job_description: str,
        structured_data: Optional[Any] = None,
    ) -> ReviewSession:
        session = ReviewSession(uuid.uuid4().hex, lines, job_description, structured_data)
        self._sessions[session.session_id] = session
        while len(self._sessions) > self._max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            LOGGER.info("session_evicted", session=evicted)
        return session

    def get(self, session_id: str) -> ReviewSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise ReviewError(f"Unknown review session: {session_id}", 404)
        return session

    def __len__(self) -> int:
        return len(self._sessions)
