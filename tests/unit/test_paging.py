"""
Unit tests for keyvault_exporter/collector/paging.py
"""
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import HttpResponseError, ServiceRequestError

from keyvault_exporter.collector.paging import iter_pages


class FakePaged:
    """Mimics ``ItemPaged.by_page()``; ``fail_at`` raises when that page is requested."""

    def __init__(self, pages, fail_at=None, error=None):
        self.pages = pages
        self.fail_at = fail_at
        self.error = error or HttpResponseError(message="Forbidden")

    def by_page(self):
        for index, page in enumerate(self.pages):
            if index == self.fail_at:
                raise self.error
            yield iter(page)
        if self.fail_at == len(self.pages):
            raise self.error


class TestIterPages:

    def test_yields_each_page(self):
        results = list(iter_pages(FakePaged([[1, 2], [3]])))

        assert [r.items for r in results] == [(1, 2), (3,)]
        assert all(r.ok for r in results)

    def test_convert_applied(self):
        results = list(iter_pages(FakePaged([["a", "b"]]), str.upper))
        assert results[0].items == ("A", "B")

    def test_empty_listing(self):
        assert list(iter_pages(FakePaged([]))) == []

    def test_error_ends_sequence(self):
        results = list(iter_pages(FakePaged([[1], [2], [3]], fail_at=1)))

        assert len(results) == 2
        assert results[0].items == (1,)
        assert not results[1].ok
        assert isinstance(results[1].error, HttpResponseError)

    def test_error_on_first_page(self):
        results = list(iter_pages(FakePaged([[1]], fail_at=0, error=ServiceRequestError("reset"))))

        assert len(results) == 1
        assert isinstance(results[0].error, ServiceRequestError)

    def test_error_while_starting(self):
        paged = MagicMock()
        paged.by_page.side_effect = HttpResponseError(message="Unauthorized")

        results = list(iter_pages(paged))

        assert len(results) == 1 and not results[0].ok

    def test_programming_errors_propagate(self):
        with pytest.raises(ZeroDivisionError):
            list(iter_pages(FakePaged([[0]]), lambda x: 1 / x))
