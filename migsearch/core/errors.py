"""Error kinds raised by the search layer."""

from __future__ import annotations

from typing import Any


class SearchError(RuntimeError):
    """Base error for search operations.

    ``results`` holds whatever records were hydrated before the failure. It is
    diagnostic only: a raised error means the collection must not be trusted.
    """

    kind = "search"

    def __init__(self, message: str, *, results: list[Any] | None = None) -> None:
        super().__init__(message)
        self.results: list[Any] = list(results or [])


class FilterParseError(SearchError):
    """A supplied filter value could not be parsed."""

    kind = "filter_parse"


class QueryPrepareError(SearchError):
    """The assembled statement failed to compile against the store."""

    kind = "query_prepare"

    def __init__(self, message: str, *, query: str) -> None:
        super().__init__(f"{message} in '{query}'")
        self.query = query


class QueryExecutionError(SearchError):
    """The store rejected or failed the prepared statement."""

    kind = "query_execution"


class RowScanError(SearchError):
    """A returned row does not match the expected column layout."""

    kind = "row_scan"


class SubDocumentError(SearchError):
    """An embedded JSON column could not be decoded."""

    kind = "sub_document"

    def __init__(self, document: str, reason: object) -> None:
        super().__init__(f"failed to unmarshal {document}: {reason}")
        self.document = document


class EnrichmentError(SearchError):
    """A secondary counters or investigators lookup failed."""

    kind = "enrichment"


class CursorError(SearchError):
    """The store failed while rows were being fetched."""

    kind = "cursor"
