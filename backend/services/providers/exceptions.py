"""
Provider exceptions.
"""


class ProviderError(Exception):
    """Base exception for provider errors.

    ``retryable`` marks transient failures (rate limits, 5xx, dropped
    connections) that the gateway may retry with backoff.
    """

    def __init__(self, provider: str, message: str, retryable: bool = False):
        self.provider = provider
        self.message = message
        self.retryable = retryable
        super().__init__(f"[{provider}] {message}")


class ProviderUnavailable(ProviderError):
    """Provider is not available (missing API key, network error, etc.)."""

    def __init__(self, provider: str, reason: str = "unavailable"):
        super().__init__(provider, f"Provider unavailable: {reason}")
        self.reason = reason


class ProviderTimeout(ProviderError):
    """A submit-then-poll job did not finish within its time budget."""

    def __init__(self, provider: str, seconds: float, what: str = "job"):
        super().__init__(provider, f"TIMEOUT: {what} did not finish within {seconds:.0f}s")
        self.seconds = seconds


class CircuitOpenError(ProviderError):
    """Calls are short-circuited after repeated consecutive failures."""

    def __init__(self, provider: str, retry_after: float):
        super().__init__(
            provider,
            f"Provider temporarily disabled after repeated failures; retry in {retry_after:.0f}s",
        )
        self.retry_after = retry_after
