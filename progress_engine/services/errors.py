"""Engine error taxonomy.

  ValidationError           malformed or unknown event: rejected, nothing mutated
  NotFoundError             referenced entity absent: fatal for this request
  IdempotencyConflictError  event_id reused with a different payload
  VersionConflict           compare-and-swap lost a race: retried internally
  ConcurrencyError          retries exhausted: transient, caller retries
  CollaboratorTimeoutError  a lookup did not answer in time: transient

The API layer maps the first three to 4xx and the last two to 503.
"""

from __future__ import annotations


class EngineError(Exception):
    pass


class ValidationError(EngineError, ValueError):
    pass


class NotFoundError(EngineError, LookupError):
    pass


class IdempotencyConflictError(EngineError):
    pass


class VersionConflict(EngineError):
    def __init__(self, kind: str, key: str, expected: int, actual: int | None) -> None:
        super().__init__(
            f"{kind}/{key}: expected version {expected}, found {actual}"
        )
        self.kind = kind
        self.key = key
        self.expected = expected
        self.actual = actual


class ConcurrencyError(EngineError):
    pass


class CollaboratorTimeoutError(EngineError, TimeoutError):
    pass
