"""Building blocks of a pipelined asyncio PostgreSQL client: connection driver, rows, query results, COPY and transactions."""

__version__ = "0.1.0"