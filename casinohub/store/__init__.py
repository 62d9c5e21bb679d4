"""Data store collaborator: query/mutate/subscribe over named collections.

Provides the abstract ``DataStore``, an in-memory implementation with a live
change feed, a PostgREST client for the hosted database, and record
validation for admin writes.
"""

from .base import Actor, ChangeFeed, DataStore, StoreSubscription
from .memory import InMemoryDataStore
from .postgrest import PostgrestDataStore
from .query import QueryResult, QuerySpec, Record
from .validation import REQUIRED_FIELDS, validate_record

__all__ = [
    "Actor",
    "ChangeFeed",
    "DataStore",
    "InMemoryDataStore",
    "PostgrestDataStore",
    "QueryResult",
    "QuerySpec",
    "Record",
    "REQUIRED_FIELDS",
    "StoreSubscription",
    "validate_record",
]
