"""
Explicit paged-sequence helpers.

Azure SDK list operations return ``ItemPaged`` objects that fetch lazily;
an HTTP failure surfaces in the middle of iteration. ``iter_pages`` turns
that into a sequence of ``PageResult`` values so callers see page failures
as data and can record a degraded status instead of silently truncating.
"""
from typing import Callable, Iterator, Optional, TypeVar

from azure.core.exceptions import AzureError

from keyvault_exporter.collector.models import PageResult

T = TypeVar("T")
R = TypeVar("R")

# Errors that end a listing. Anything else is a programming error and propagates.
PAGE_ERRORS = (AzureError, OSError)


def iter_pages(
    paged,
    convert: Optional[Callable[[T], R]] = None,
) -> Iterator[PageResult]:
    """
    Iterate an ``ItemPaged`` page by page.

    Args:
        paged: Object exposing ``by_page()`` (Azure ``ItemPaged``)
        convert: Optional per-item conversion applied inside the page

    Yields:
        ``PageResult`` per page; the last one carries the error, if any
    """
    try:
        pages = iter(paged.by_page())
    except PAGE_ERRORS as exc:
        yield PageResult(error=exc)
        return

    while True:
        try:
            page = next(pages)
            raw_items = list(page)
        except StopIteration:
            return
        except PAGE_ERRORS as exc:
            yield PageResult(error=exc)
            return

        if convert is not None:
            items = tuple(convert(item) for item in raw_items)
        else:
            items = tuple(raw_items)
        yield PageResult(items=items)
