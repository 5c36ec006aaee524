"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class OperatorError(Exception):
    """Base class for all contour operator exceptions"""

    # The reason string reported in status conditions for this error class
    reason = "ReconcileFailed"

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should signal a fatal
        state in the reconciliation
        """
        return self._is_fatal_error

    @property
    def is_transient(self):
        """Property indicating whether retrying the same operation may succeed"""
        return not self._is_fatal_error


## Fatal Errors ################################################################


class FatalError(OperatorError):
    """A FatalError is one that indicates an unexpected, and likely
    unrecoverable, failure during a reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(FatalError):
    """Exception caused by invalid process configuration"""

    reason = "InvalidConfig"


class ValidationError(FatalError):
    """Exception indicating that a persisted Contour spec fails validation. This
    is terminal until the spec changes.
    """

    reason = "InvalidSpec"


class InvariantError(FatalError):
    """Exception indicating that an internal invariant was violated (e.g. two
    rendered objects sharing one identity).
    """

    reason = "InvariantViolation"


class OwnershipConflictError(FatalError):
    """Exception raised when an object the operator wants to manage already
    exists and is not owned by the reconciling Contour
    """

    reason = "OwnershipConflict"


class ClusterError(FatalError):
    """Exception caused when a cluster operation fails in an unexpected way.
    Reconciles failing with this error are still retried with backoff.
    """

    reason = "ClusterError"


## Expected Errors #############################################################


class ExpectedError(OperatorError):
    """An ExpectedError is one that indicates an expected failure condition
    that should cause a reconciliation to terminate, but is expected to resolve
    in a subsequent reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class TransientError(ExpectedError):
    """Base for cluster API failures that should be retried with backoff"""

    reason = "TransientError"


class ConflictError(TransientError):
    """The object was modified since it was read (resourceVersion mismatch)"""

    reason = "Conflict"


class AlreadyExistsError(TransientError):
    """The object being created already exists"""

    reason = "AlreadyExists"


class NotFoundError(ExpectedError):
    """The requested object does not exist"""

    reason = "NotFound"


class ThrottledError(TransientError):
    """The API server rejected the request due to rate limiting"""

    reason = "Throttled"


class ExpiredError(TransientError):
    """The requested resourceVersion is too old for a watch (410 Gone)"""

    reason = "Expired"


class UnavailableError(TransientError):
    """The API server could not be reached or timed out"""

    reason = "Unavailable"


## Assertions ##################################################################


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when validating process configuration.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching the Contour
    being reconciled) must succeed.
    """
    if not condition:
        raise ClusterError(message)


def assert_invariant(condition: bool, message: str = ""):
    """Replacement for assert() which will throw an InvariantError"""
    if not condition:
        raise InvariantError(message)
