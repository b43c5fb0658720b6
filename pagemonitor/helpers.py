import math
import asyncio
from urllib.parse import urlparse

from pagemonitor.errors import InvalidURLError


def validate_url(url):
    """
    Makes sure a URL is absolute and uses http or https.

    Raises:
        InvalidURLError: If the browser would not be able to resolve the URL.
    """
    url = str(url).strip()
    parsed_url = urlparse(url)
    if (not parsed_url.netloc) or (parsed_url.scheme not in ["http", "https"]):
        raise InvalidURLError(f"Invalid URL: {url!r} (must be an absolute http or https URL)")
    return url


def clamp_quality(quality):
    """
    Clamps a JPEG quality value to the range accepted by Page.captureScreenshot.

    Examples:
        >>> clamp_quality(90)
        90
        >>> clamp_quality(150)
        100
        >>> clamp_quality(-5)
        0
    """
    return max(0, min(100, int(quality)))


def ceil_size(width, height):
    """
    Rounds a (possibly fractional) content size up to whole pixels.

    Examples:
        >>> ceil_size(799.2, 600.0)
        (800, 600)
    """
    return int(math.ceil(width)), int(math.ceil(height))


def get_exception_chain(e):
    """
    Retrieves the full chain of exceptions leading to the given exception.

    Args:
        e (BaseException): The exception for which to get the chain.

    Returns:
        list[BaseException]: List of exceptions in the chain, from the given exception back to the root cause.
    """
    exception_chain = []
    current_exception = e
    while current_exception is not None:
        exception_chain.append(current_exception)
        current_exception = getattr(current_exception, "__context__", None)
    return exception_chain


def in_exception_chain(e, exc_types):
    """
    Given an Exception and a list of Exception types, returns whether any of the specified types are contained anywhere in the Exception chain.

    Args:
        e (BaseException): The exception to check
        exc_types (list[Exception]): Exception types to look for

    Returns:
        bool: Whether any of the types appear in the chain
    """
    return any(isinstance(_, exc_types) for _ in get_exception_chain(e))


def is_cancellation(e):
    return in_exception_chain(e, (KeyboardInterrupt, asyncio.CancelledError))


def repr_params(params):
    return f"{', '.join(f'{k}={repr(v)}' for k, v in params.items())}"
