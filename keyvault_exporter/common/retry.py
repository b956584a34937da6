"""
Retry utilities using tenacity library.
Used only during bootstrap (credential validation, initial subscription
lookup); calls made inside a collection cycle are never retried.
"""
import logging

from azure.core.exceptions import AzureError, ClientAuthenticationError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log
)

from keyvault_exporter.common.exceptions import SubscriptionListError
from keyvault_exporter.common.logging_config import get_logger

logger = get_logger(__name__)


def is_transient_azure_error(exc: BaseException) -> bool:
    """
    Decide whether a bootstrap failure is worth retrying.

    Authentication failures are permanent for the lifetime of the process
    (bad secret, missing role assignment), so they are not retried.
    Listing errors raised by the API client are judged by their cause.
    """
    if isinstance(exc, SubscriptionListError) and exc.__cause__ is not None:
        exc = exc.__cause__
    if isinstance(exc, ClientAuthenticationError):
        return False
    return isinstance(exc, (AzureError, ConnectionError, TimeoutError))


def retry_on_azure_error(
    max_attempts: int = 4,
    min_wait: int = 2,
    max_wait: int = 30,
    multiplier: int = 2
):
    """
    Retry decorator for bootstrap calls against Azure.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        multiplier: Multiplier for exponential backoff

    Returns:
        Retry decorator

    Example:
        @retry_on_azure_error(max_attempts=3)
        def list_subscriptions():
            ...
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
        retry=retry_if_exception(is_transient_azure_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
