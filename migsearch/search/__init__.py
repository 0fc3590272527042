"""Search pipeline: filters, ranges, joins, query building, hydration."""

from .builder import SearchQuery, build_search_query
from .enrich import Enricher, LookupEnricher
from .joins import Entity, Join, infer_joins
from .parameters import SearchParameters, new_search_parameters
from .ranges import MAX_JSON_SAFE_ID, IDRange, resolve_id_ranges
from .service import SearchService

__all__ = [
    "build_search_query",
    "Enricher",
    "Entity",
    "IDRange",
    "infer_joins",
    "Join",
    "LookupEnricher",
    "MAX_JSON_SAFE_ID",
    "new_search_parameters",
    "resolve_id_ranges",
    "SearchParameters",
    "SearchQuery",
    "SearchService",
]
