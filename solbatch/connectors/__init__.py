"""
Database connectors.
"""

from solbatch.connectors.postgres_pool import PostgresConnectionPool

__all__ = ["PostgresConnectionPool"]
