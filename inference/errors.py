"""
Error taxonomy for the generation pipeline.

Backends raise, the HTTP layer maps to status codes:
- PromptValidationError -> 400
- BackendError          -> 500 (construction-time BackendConfigError is
                           absorbed by the fallback policy)
- TransportError        -> stream stops, status already sent
- LoggingError          -> reported to the application log only
"""


class GatewayError(Exception):
    """Base class for all gateway errors."""


class PromptValidationError(GatewayError):
    """Prompt missing, malformed or blank."""


class BackendError(GatewayError):
    """Backend failed to produce a completion."""


class BackendConfigError(BackendError):
    """Backend configuration rejected at construction time."""


class GenerationCancelled(BackendError):
    """Caller cancelled the generation (client gone or deadline hit)."""


class TransportError(GatewayError):
    """Writing or flushing a streamed fragment failed."""


class LoggingError(GatewayError):
    """Interaction log store could not be opened or written."""
