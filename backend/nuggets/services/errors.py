"""
Error taxonomy for the content-processing pipeline.

None of these are fatal to a batch: the orchestrator catches the AI errors and
substitutes a deterministic fallback, DuplicateContent is a silent skip, and the
HTTP layer maps the remaining ones to status codes.
"""
from __future__ import annotations


class PipelineError(Exception):
    """Base error for the content-processing pipeline."""


class AIUnavailable(PipelineError):
    """The text-generation call itself failed (network, auth, timeout, provider error)."""


class AIMalformedResponse(PipelineError):
    """The text-generation call returned, but the JSON contract was violated."""

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class DuplicateContent(PipelineError):
    """The dedup ledger has already surfaced this content for the owner."""

    def __init__(self, owner_id: str, fingerprint: str) -> None:
        super().__init__(f"content {fingerprint} already seen for owner {owner_id}")
        self.owner_id = owner_id
        self.fingerprint = fingerprint


class GroupPartiallyFailed(PipelineError):
    """
    One or more group members used a fallback summary.

    Informational only: synthesis proceeds and the result is not flagged as degraded.
    """

    def __init__(self, group_id: str, fallback_item_ids: list[str]) -> None:
        super().__init__(
            f"group {group_id}: {len(fallback_item_ids)} member(s) used a fallback summary"
        )
        self.group_id = group_id
        self.fallback_item_ids = fallback_item_ids


class InvalidTransition(PipelineError):
    """A processing-state transition that the state machine does not allow."""

    def __init__(self, item_id: str, from_state: str, to_state: str) -> None:
        super().__init__(f"item {item_id}: cannot move from {from_state} to {to_state}")
        self.item_id = item_id
        self.from_state = from_state
        self.to_state = to_state


class ItemNotFound(PipelineError):
    """No item or group exists for the given owner and id."""


class EntitlementDenied(PipelineError):
    """The owner's tier does not permit the requested operation."""
