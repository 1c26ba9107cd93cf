"""Centralized exception hierarchy for the control engine.

All domain and service exceptions inherit from :class:`HomeControlError` so
that callers can catch a single base class when they need a broad safety net,
yet still match on specific subclasses where narrower handling is appropriate.

Timer-driven controller methods catch these internally and fall back to a safe
value; manual operations (set target, simulate, feedback) let them propagate to
the caller.

Hierarchy
---------
::

    HomeControlError (base)
    ├── ValidationError          (bad input / implausible reading / malformed advice)
    ├── NotFoundError            (entity does not exist)
    ├── ConflictError            (state conflict, e.g. cycle already running)
    ├── ServiceError             (business-logic failure)
    │   ├── RepositoryError      (database / persistence)
    │   └── ExternalServiceError (third-party / network)
    │       └── ConnectivityError (gateway or advisor unreachable / non-2xx)
    ├── StateInconsistencyError  (persisted state disagrees with reality)
    └── ConfigurationError       (missing / invalid config)
"""

from __future__ import annotations


class HomeControlError(Exception):
    """Base exception for all control-engine errors.

    Parameters
    ----------
    message:
        Human-readable description.
    detail:
        Optional machine-readable context dict attached to the error for
        structured logging.
    """

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


class ValidationError(HomeControlError):
    """Invalid input, implausible sensor reading or malformed advisory payload."""


class NotFoundError(HomeControlError):
    """Requested entity does not exist."""


class ConflictError(HomeControlError):
    """Operation conflicts with existing state."""


class ServiceError(HomeControlError):
    """Business-logic failure in a service method."""


class RepositoryError(ServiceError):
    """Database / persistence layer failure."""


class ExternalServiceError(ServiceError):
    """Third-party or network dependency failure."""


class ConnectivityError(ExternalServiceError):
    """Gateway or advisory service unreachable, timed out or answered non-2xx."""


class StateInconsistencyError(HomeControlError):
    """Persisted state no longer matches the device (e.g. an expired session)."""


class ConfigurationError(HomeControlError):
    """Missing or invalid application configuration."""
