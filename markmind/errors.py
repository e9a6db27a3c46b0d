"""
Exception types raised by the MarkMind engine and its providers.

Only FragmentNotFoundError reaches callers of the linking engine; provider
errors are caught at the tier boundary and turned into a fallback.
"""


class MarkMindError(Exception):
    """Base class for MarkMind errors."""


class FragmentNotFoundError(MarkMindError, LookupError):
    """The requested source fragment does not exist in the store."""

    def __init__(self, fragment_id: str):
        super().__init__(f"Fragment not found: {fragment_id}")
        self.fragment_id = fragment_id


class ProviderError(MarkMindError):
    """An AI provider call failed."""


class TransientProviderError(ProviderError):
    """Network failure or timeout talking to an AI provider."""


class MalformedResponseError(ProviderError):
    """Provider response could not be parsed into the expected shape."""


class ProviderUnavailableError(ProviderError):
    """The configured provider cannot serve completions."""
