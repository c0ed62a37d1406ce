"""Exceptions surfaced by the gating pipeline."""


class ToolgateError(Exception):
    """Base class for request-level pipeline errors."""


class CompletionError(ToolgateError):
    """The completion engine failed; there is no safe answer to synthesize."""


class CompletionTimeoutError(CompletionError):
    """The completion engine did not answer within its timeout."""


class CatalogError(ToolgateError):
    """The capability catalog could not be resolved."""


class ClassificationError(ToolgateError):
    """Auxiliary classification failed.

    Raised and handled inside the classifier only; callers always receive a
    decision.
    """


class CapabilityExecutionError(ToolgateError):
    """The capability executor raised instead of returning a result."""


class CapabilityExecutionTimeoutError(CapabilityExecutionError):
    """A capability invocation did not finish within its timeout."""
