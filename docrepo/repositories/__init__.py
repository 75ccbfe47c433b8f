"""Repositories over a partitioned document store.

:mod:`repositories.core` holds the generic CRUD/query engine; the owned and
parented variants add owner- and parent-scoped operations, and
:mod:`repositories.bulk` runs single-item operations for many items.
"""
