"""
Database operations for Supabase.

Handles client initialization and paged, chunked read queries.
"""

import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence
from supabase import create_client, Client
from attendance_reports.config import Config
from attendance_reports.exceptions import StoreError

logger = logging.getLogger(__name__)

# Applies eq/gte/lte/in filters to a fresh PostgREST select builder
QueryFilter = Callable[[Any], Any]


def get_supabase_client() -> Client:
    """
    Initialize and return a Supabase client.

    Returns:
        Client: Initialized Supabase client

    Raises:
        ConfigurationError: If configuration is invalid
    """
    Config.validate()

    client = create_client(Config.SUPABASE_URL, Config.SUPABASE_SERVICE_ROLE_KEY)
    logger.info("Supabase client initialized successfully")
    return client


def chunked(values: Sequence[str], size: Optional[int] = None) -> Iterator[List[str]]:
    """Yield successive slices of at most ``size`` values."""
    size = size or Config.IN_FILTER_CHUNK_SIZE
    values = list(values)
    for start in range(0, len(values), size):
        yield values[start:start + size]


def fetch_all_rows(
    client: Client,
    table_name: str,
    columns: str = "*",
    apply_filters: Optional[QueryFilter] = None,
    page_size: Optional[int] = None,
    order_by: Sequence[str] = ("id",)
) -> List[Dict[str, Any]]:
    """
    Select every matching row of a table, one page at a time.

    PostgREST caps the number of rows per response, so pages are requested
    with range() until a short page comes back. Pages are only disjoint when
    the rows have a total order, so order_by must identify a row uniquely.

    Args:
        client: Supabase client
        table_name: Name of the table or view to query
        columns: Column names to select (default: "*" for all)
        apply_filters: Optional callable adding filters to the select builder
        page_size: Rows per request (default: Config.PAGE_SIZE)
        order_by: Columns giving a stable row order across pages

    Returns:
        List of row dictionaries

    Raises:
        StoreError: If any request fails
    """
    page_size = page_size or Config.PAGE_SIZE
    rows: List[Dict[str, Any]] = []
    start = 0

    try:
        while True:
            query = client.table(table_name).select(columns)
            if apply_filters is not None:
                query = apply_filters(query)
            for column in order_by:
                query = query.order(column)
            response = query.range(start, start + page_size - 1).execute()
            batch = response.data or []
            rows.extend(batch)
            if len(batch) < page_size:
                break
            start += page_size
    except Exception as e:
        logger.error(f"Error querying table {table_name}: {e}")
        raise StoreError(f"Query on {table_name} failed: {e}") from e

    logger.debug(f"Retrieved {len(rows)} rows from {table_name}")
    return rows


def fetch_rows_in(
    client: Client,
    table_name: str,
    column: str,
    values: Sequence[str],
    columns: str = "*",
    apply_filters: Optional[QueryFilter] = None,
    order_by: Sequence[str] = ("id",)
) -> List[Dict[str, Any]]:
    """
    Select rows whose ``column`` is in ``values``, splitting long id lists.

    Args:
        client: Supabase client
        table_name: Name of the table or view to query
        column: Column the in() filter applies to
        values: Values to match
        columns: Column names to select
        apply_filters: Optional callable adding further filters
        order_by: Columns giving a stable row order across pages

    Returns:
        List of row dictionaries across all chunks
    """
    rows: List[Dict[str, Any]] = []
    for chunk in chunked(values):
        def filters(query, chunk=chunk):
            query = query.in_(column, chunk)
            if apply_filters is not None:
                query = apply_filters(query)
            return query
        rows.extend(fetch_all_rows(client, table_name, columns, filters, order_by=order_by))
    return rows


def count_rows(client: Client, table_name: str, apply_filters: Optional[QueryFilter] = None) -> int:
    """
    Count matching rows using PostgREST's exact count.

    Raises:
        StoreError: If the request fails or no count is returned
    """
    try:
        query = client.table(table_name).select("id", count="exact")
        if apply_filters is not None:
            query = apply_filters(query)
        response = query.limit(1).execute()
    except Exception as e:
        logger.error(f"Error counting rows in {table_name}: {e}")
        raise StoreError(f"Count on {table_name} failed: {e}") from e

    if response.count is None:
        logger.error(f"No row count returned for {table_name}")
        raise StoreError(f"Count on {table_name} returned no value")

    return int(response.count)
