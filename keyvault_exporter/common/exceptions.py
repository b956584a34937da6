"""
Custom exceptions for the Key Vault exporter.
Hierarchical exception structure separating fatal, cycle-level and
resource-level failures.
"""


class ExporterError(Exception):
    """Base exception for the Key Vault exporter"""
    pass


class ConfigurationError(ExporterError):
    """Error in configuration loading or validation"""
    pass


class CredentialError(ExporterError):
    """Error acquiring or validating Azure credentials (fatal)"""
    pass


class SubscriptionListError(ExporterError):
    """Error enumerating or resolving Azure subscriptions"""
    pass


class FilterResolutionError(ExporterError):
    """Error evaluating the Resource Graph inclusion filter"""
    pass


class CycleAbortedError(ExporterError):
    """A collection cycle was abandoned before publishing"""
    pass


class CycleTimeoutError(CycleAbortedError):
    """A collection cycle exceeded its deadline"""

    def __init__(self, timeout: float, pending: int):
        self.timeout = timeout
        self.pending = pending
        super().__init__(
            f"Collection cycle exceeded {timeout:.1f}s with {pending} task(s) unresolved"
        )
