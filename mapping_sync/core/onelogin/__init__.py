"""OneLogin v2 API client library.

Architecture:
- client.py: HTTP client with token caching and retry/backoff
- paging.py: Paged list requests with per-path page size ceilings
- mappings.py: Mapping model and per-mapping operations
- mapping_order.py: Reconciliation of the enabled order / disabled set
- exceptions.py: Typed exceptions for error handling

Usage:
    from mapping_sync.core.onelogin import OneLoginClient, MappingOrderReconciler, DesiredOrderState

    client = OneLoginClient.connect("acme", "client-id", "client-secret")
    reconciler = MappingOrderReconciler(client)
    reconciler.reconcile(DesiredOrderState(enabled=[5, 3, 8], disabled=[1]))
"""
from .client import (
    OneLoginClient,
    TokenCache,
    BearerToken,
    RequestSpec,
    RetryPolicy,
    QueryParams,
    NO_RETRY,
    DEFAULT_TIMEOUT,
    METHOD_GET,
    METHOD_POST,
    METHOD_PUT,
    METHOD_DELETE,
    PATH_APPS,
    PATH_ROLES,
    PATH_USERS,
    PATH_MAPPINGS,
    PATH_MAPPINGS_SORT,
    PATH_CONNECTORS,
)
from .exceptions import (
    OneLoginError,
    AuthenticationError,
    HTTPStatusError,
    NotFoundError,
    RateLimitExceededError,
    BadGatewayError,
    SerializationError,
    ResponseDecodeError,
    RequestCancelledError,
    PageSizeNotConfiguredError,
    MissingPaginationMetadataError,
    MappingOrderError,
    DuplicateIdInDesiredStateError,
    SetMismatchError,
    InvariantViolationError,
    ToggleMismatchError,
    ReorderLengthMismatchError,
    ReorderOrderMismatchError,
)
from .paging import (
    Page,
    PageResult,
    PagedFetchExecutor,
    MAX_PAGE_SIZE,
)
from .mappings import (
    MappingRule,
    MappingCondition,
    MappingAction,
    MappingService,
)
from .mapping_order import (
    DesiredOrderState,
    ObservedOrderState,
    ReconcilePlan,
    ReconcileResult,
    MappingOrderReconciler,
    TOGGLE_RETRY_POLICY,
)

__all__ = [
    # Client
    "OneLoginClient",
    "TokenCache",
    "BearerToken",
    "RequestSpec",
    "RetryPolicy",
    "QueryParams",
    "NO_RETRY",
    "DEFAULT_TIMEOUT",
    "METHOD_GET",
    "METHOD_POST",
    "METHOD_PUT",
    "METHOD_DELETE",
    "PATH_APPS",
    "PATH_ROLES",
    "PATH_USERS",
    "PATH_MAPPINGS",
    "PATH_MAPPINGS_SORT",
    "PATH_CONNECTORS",

    # Exceptions
    "OneLoginError",
    "AuthenticationError",
    "HTTPStatusError",
    "NotFoundError",
    "RateLimitExceededError",
    "BadGatewayError",
    "SerializationError",
    "ResponseDecodeError",
    "RequestCancelledError",
    "PageSizeNotConfiguredError",
    "MissingPaginationMetadataError",
    "MappingOrderError",
    "DuplicateIdInDesiredStateError",
    "SetMismatchError",
    "InvariantViolationError",
    "ToggleMismatchError",
    "ReorderLengthMismatchError",
    "ReorderOrderMismatchError",

    # Paging
    "Page",
    "PageResult",
    "PagedFetchExecutor",
    "MAX_PAGE_SIZE",

    # Mappings
    "MappingRule",
    "MappingCondition",
    "MappingAction",
    "MappingService",

    # Mapping order
    "DesiredOrderState",
    "ObservedOrderState",
    "ReconcilePlan",
    "ReconcileResult",
    "MappingOrderReconciler",
    "TOGGLE_RETRY_POLICY",
]
