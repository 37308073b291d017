# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
Errors raised while reconciling an organization.

Everything that the reconciler can recover from or report derives from
ReconcileError. Callers that attempt many independent mutations catch
ReconcileError per item, collect the failures, and raise a single
AggregateError at the end, so one failed invite does not abort the others.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class ReconcileError(Exception):
    pass


class ConfigError(ReconcileError):
    """The options or the org configuration file are invalid."""


class ApiError(ReconcileError):
    """A request to the GitHub API did not succeed."""

    def __init__(self, message: str, status: int = 0, url: str = "", body: str = ""):
        super().__init__(message)
        self.status = status
        self.url = url
        self.body = body


class NotFoundError(ApiError):
    """
    The API responded with 404. Removing something that is already gone counts
    as success, so callers check for this case specifically.
    """


class ValidationError(ReconcileError):
    """
    A pre-flight check failed. These are raised before any mutating call of
    the phase is issued, so nothing has been changed when you see one.
    """


class QuotaExceededError(ValidationError):
    def __init__(self, what: str, removing: int, ratio: float, max_delta: float):
        super().__init__(
            f"cannot delete {removing} {what} or {ratio:.3f} of them "
            f"(exceeds limit of {max_delta:.3f})"
        )
        self.removing = removing
        self.ratio = ratio
        self.max_delta = max_delta


class PolicyError(ReconcileError):
    """A requested repository change was dropped because it is not allowed."""


class AggregateError(ReconcileError):
    """
    An ordered collection of failures. Nested aggregates are flattened, so
    `errors` only ever contains leaf errors.
    """

    def __init__(self, errors: Sequence[Exception]):
        flat: List[Exception] = []
        for error in errors:
            if isinstance(error, AggregateError):
                flat.extend(error.errors)
            else:
                flat.append(error)
        self.errors = flat
        if len(flat) == 1:
            super().__init__(str(flat[0]))
        else:
            super().__init__("[" + ", ".join(str(e) for e in flat) + "]")

    @staticmethod
    def from_errors(errors: Sequence[Exception]) -> Optional[AggregateError]:
        if len(errors) == 0:
            return None
        return AggregateError(errors)


def raise_aggregate(errors: Sequence[Exception]) -> None:
    aggregate = AggregateError.from_errors(errors)
    if aggregate is not None:
        raise aggregate


class PhaseError(ReconcileError):
    """
    Wraps the failure of one reconciliation phase (org metadata, members,
    repos, teams) with the name of that phase.
    """

    def __init__(self, phase: str, cause: ReconcileError):
        super().__init__(f"failed to configure {phase}: {cause}")
        self.phase = phase
        self.cause = cause

    @property
    def aborted(self) -> bool:
        """True when the phase was stopped by a pre-flight check."""
        return isinstance(self.cause, ValidationError)

    @property
    def errors(self) -> List[Exception]:
        if isinstance(self.cause, AggregateError):
            return list(self.cause.errors)
        return [self.cause]


def with_context(message: str, err: ApiError) -> ApiError:
    """
    Return a copy of `err` (of the same type) with `message` prepended, so
    that an error still makes sense after it was collected into an aggregate.
    """
    return type(err)(f"{message}: {err}", err.status, err.url, err.body)
