"""AsyncComputationCoordinator - pending-marker protocol for queued computations.

Per record: Idle --begin(req)--> Pending(req) --finish(req)--> Idle.
Cooperating records are marked and cleared together; a request that never
gets a callback leaves its records Pending indefinitely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from subly.errors import ComputationAborted, ErrorCode, IntegrityError, ValidationError
from subly.models.confidential import ComputationOutput, ComputationStatus, EncryptedState

log = logging.getLogger(__name__)


@dataclass
class Marker:
    """Points at the pending-request attribute of one record."""

    record: Any
    attr: str = "pending"

    def get(self) -> int | None:
        return getattr(self.record, self.attr)

    def set(self, value: int | None) -> None:
        setattr(self.record, self.attr, value)


class AsyncComputationCoordinator:
    """Guards records against overlapping computations and stale results."""

    def begin(self, markers: Sequence[Marker], request_id: int) -> None:
        """Mark every record Pending(request_id), or none of them."""
        if any(m.get() is not None for m in markers):
            raise ValidationError(ErrorCode.PENDING_COMPUTATION_IN_PROGRESS)
        for m in markers:
            m.set(request_id)
        log.debug("Request %d pending on %d record(s)", request_id, len(markers))

    def finish(self, markers: Sequence[Marker], request_id: int) -> None:
        """Clear every marker for a matching callback, or none of them."""
        if any(m.get() != request_id for m in markers):
            raise IntegrityError(
                ErrorCode.PENDING_COMPUTATION_MISMATCH,
                f"callback for request {request_id}",
            )
        for m in markers:
            m.set(None)

    def validate(
        self,
        output: ComputationOutput,
        results: Sequence[tuple[EncryptedState | None, EncryptedState]],
    ) -> None:
        """Reject failed or replayed results.

        `results` pairs each returned sealed state with the record's
        pre-request state. A missing or byte-identical result is rejected.
        """
        if output.status is ComputationStatus.FAILURE:
            raise ComputationAborted(ErrorCode.ABORTED_COMPUTATION)
        for returned, previous in results:
            if returned is None:
                raise IntegrityError(ErrorCode.COMPUTATION_VALIDATION_FAILED, "missing result")
            if returned == previous:
                raise IntegrityError(
                    ErrorCode.COMPUTATION_VALIDATION_FAILED, "result replays prior state",
                )
