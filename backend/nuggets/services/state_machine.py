from __future__ import annotations

from ..models.content_item import ProcessingState
from .errors import InvalidTransition

# Forward-only; processing -> scraped exists solely for explicit re-processing
_FORWARD = {
    ProcessingState.SCRAPED: {ProcessingState.PROCESSING},
    ProcessingState.PROCESSING: {ProcessingState.READY},
    ProcessingState.READY: set(),
}
_RESET = {ProcessingState.PROCESSING: {ProcessingState.SCRAPED}}


def check_transition(
    item_id: str,
    current: ProcessingState,
    target: ProcessingState,
    *,
    reset: bool = False,
) -> None:
    allowed = _RESET if reset else _FORWARD
    if target not in allowed.get(ProcessingState(current), set()):
        raise InvalidTransition(item_id, ProcessingState(current).value, ProcessingState(target).value)
