"""
Exception hierarchy for automation persistence.

Repositories translate backend failures into these types so the engine and
rule manager never see boto3/botocore exceptions directly.
"""


class RepositoryError(Exception):
    """
    Base exception for all repository errors.

    Used for recoverable and unrecoverable errors from the storage backend.
    """

    pass


class NotFoundError(RepositoryError):
    """
    Raised when a requested entity does not exist.

    Repository ``find_*`` methods return None for missing items; this is
    raised by callers (e.g. the rule manager) that require the entity.
    """

    pass


class RuleNotFoundError(NotFoundError):
    """Raised when an automation rule id does not exist."""

    def __init__(self, rule_id):
        super().__init__(f"automation rule not found: {rule_id}")
        self.rule_id = rule_id


class PipelineNotFoundError(NotFoundError):
    """Raised when a rule references a pipeline that does not exist."""

    def __init__(self, pipeline_id):
        super().__init__(f"pipeline not found: {pipeline_id}")
        self.pipeline_id = pipeline_id


class SessionNotFoundError(NotFoundError):
    """Raised when a session referenced by an event does not exist."""

    def __init__(self, session_id):
        super().__init__(f"session not found: {session_id}")
        self.session_id = session_id


class ThrottlingError(RepositoryError):
    """
    Raised when the backend keeps throttling after retry exhaustion.

    Callers should back off and retry at a higher level.
    """

    pass


class NetworkError(RepositoryError):
    """Raised on connection-level failures (timeouts, DNS, TLS)."""

    pass


class AccessDeniedError(RepositoryError):
    """
    Raised when IAM permissions are insufficient for the operation.

    Indicates a configuration issue that must be fixed by an administrator.
    """

    pass
