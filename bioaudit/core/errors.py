"""Error taxonomy shared by the extraction, conformity and registry layers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class BioAuditError(Exception):
    pass


class MalformedInput(BioAuditError):
    """An AI or registry payload could not be read as a JSON object at all."""

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw[:200] if raw else raw


class ExternalServiceUnavailable(BioAuditError):
    """AI provider or registry unreachable, unconfigured, non-2xx or timed out."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.message = message


@dataclass(frozen=True)
class ServiceOutcome(Generic[T]):
    value: T | None = None
    error: ExternalServiceUnavailable | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> ServiceOutcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: ExternalServiceUnavailable) -> ServiceOutcome[T]:
        return cls(error=error)
