class CanopyError(Exception):
    """Base error for Canopy."""


class RecoverableError(CanopyError):
    """Indicates the operation can be retried safely."""


class PermanentError(CanopyError):
    """Indicates the operation should not be retried."""


class AuthError(CanopyError):
    """Authentication or authorization failure."""


class ValidationError(CanopyError):
    """Input validation failure."""


class EmbeddingUnavailableError(RecoverableError):
    """The query embedding could not be produced."""


class SourceTimeoutError(RecoverableError):
    """A retrieval source did not answer within its time budget."""


class SearchFailedError(PermanentError):
    """Both the primary and the fallback document search failed."""
