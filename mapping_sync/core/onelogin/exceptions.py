"""OneLogin-specific exceptions for error handling."""
from __future__ import annotations
from typing import Iterable, Optional, Sequence


class OneLoginError(Exception):
    """Base exception for all OneLogin operations."""
    pass


class AuthenticationError(OneLoginError):
    """Client credentials exchange was rejected.

    Attributes:
        status_code: HTTP status code returned by the token endpoint
    """

    def __init__(self, status_code: int, endpoint: str):
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(f"authentication failed with status code {status_code} ({endpoint})")


class HTTPStatusError(OneLoginError):
    """Non-2xx response from the OneLogin API.

    Attributes:
        status_code: HTTP status code
        body: Raw response body
        endpoint: API endpoint that failed
    """

    def __init__(self, status_code: int, body: str, endpoint: str):
        self.status_code = status_code
        self.body = body
        self.endpoint = endpoint
        super().__init__(f"request failed with status code {status_code} [{endpoint}]\n{body}")


class NotFoundError(HTTPStatusError):
    """Resource does not exist (HTTP 404)."""

    def __init__(self, endpoint: str, body: str = ""):
        super().__init__(404, body, endpoint)


class RateLimitExceededError(HTTPStatusError):
    """Rate limit exceeded (HTTP 429) on a paged request."""

    def __init__(self, endpoint: str, body: str = ""):
        super().__init__(429, body, endpoint)


class BadGatewayError(HTTPStatusError):
    """Bad gateway (HTTP 502) on a paged request."""

    def __init__(self, endpoint: str, body: str = ""):
        super().__init__(502, body, endpoint)


class SerializationError(OneLoginError):
    """Request body could not be encoded as JSON."""
    pass


class ResponseDecodeError(OneLoginError):
    """Response body could not be decoded into the expected model."""
    pass


class RequestCancelledError(OneLoginError):
    """The caller cancelled the request while it was waiting to retry."""
    pass


class PageSizeNotConfiguredError(OneLoginError):
    """No maximum page size is known for the requested path."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"max page size not configured for path {path}")


class MissingPaginationMetadataError(OneLoginError):
    """Paged response lacked a usable Total-Pages header."""
    pass


# ─────────────────────────────────────────────────────────────────────────────
# Mapping order reconciliation
# ─────────────────────────────────────────────────────────────────────────────
class MappingOrderError(OneLoginError):
    """Base exception for mapping order reconciliation failures."""
    pass


class DuplicateIdInDesiredStateError(MappingOrderError):
    """An id appears more than once across the desired enabled/disabled lists."""

    def __init__(self, duplicate_ids: Iterable[int]):
        self.duplicate_ids = sorted(set(duplicate_ids))
        super().__init__(f"duplicate ids in desired mapping order: {self.duplicate_ids}")


class SetMismatchError(MappingOrderError):
    """Desired ids and remote ids are not the same set.

    Attributes:
        extra_in_desired: ids declared but unknown to OneLogin
        extra_in_remote: ids present in OneLogin but not declared
    """

    def __init__(self, extra_in_desired: Iterable[int], extra_in_remote: Iterable[int], context: str = "desired"):
        self.extra_in_desired = sorted(extra_in_desired)
        self.extra_in_remote = sorted(extra_in_remote)
        super().__init__(
            f"mapping ids differ between {context} state and onelogin: "
            f"only in {context}={self.extra_in_desired}, only in onelogin={self.extra_in_remote}"
        )


class InvariantViolationError(MappingOrderError):
    """Enabled mapping positions are not exactly 1..N.

    Attributes:
        out_of_position: (id, actual_position, expected_position) rows
        null_positions: ids of enabled mappings without a position
    """

    def __init__(
        self,
        out_of_position: Sequence[tuple[int, int, int]] = (),
        null_positions: Sequence[int] = (),
    ):
        self.out_of_position = list(out_of_position)
        self.null_positions = list(null_positions)
        super().__init__(describe_position_violation(self.out_of_position, self.null_positions))


class ToggleMismatchError(MappingOrderError):
    """Toggle update echoed a different mapping id than the one targeted."""

    def __init__(self, expected_id: int, actual_id: Optional[int]):
        self.expected_id = expected_id
        self.actual_id = actual_id
        super().__init__(f"toggle response id {actual_id} does not match target id {expected_id}")


class ReorderLengthMismatchError(MappingOrderError):
    """Sort response has a different length than the requested order."""

    def __init__(self, expected: Sequence[int], actual: Sequence[int]):
        self.expected = list(expected)
        self.actual = list(actual)
        super().__init__(
            f"sort response has {len(self.actual)} ids, expected {len(self.expected)}: "
            f"expected={self.expected} actual={self.actual}"
        )


class ReorderOrderMismatchError(MappingOrderError):
    """Sort response order differs from the requested order."""

    def __init__(self, expected: Sequence[int], actual: Sequence[int], index: int):
        self.expected = list(expected)
        self.actual = list(actual)
        self.index = index
        super().__init__(
            f"sort response does not match requested order at position {index + 1}: "
            f"expected={self.expected} actual={self.actual}"
        )


def describe_position_violation(
    out_of_position: Sequence[tuple[int, int, int]],
    null_positions: Sequence[int] = (),
) -> str:
    lines = ["mapping positions are not linearly increasing starting at 1"]
    if null_positions:
        lines.append(f"enabled mappings with a null position: {list(null_positions)}")
    if out_of_position:
        lines.append("id, actual_pos, expected_pos")
        for mapping_id, actual, expected in out_of_position:
            lines.append(f"{mapping_id}, {actual}, {expected}")
    return "\n".join(lines)
