"""
Repository layer for data access.

Repositories encapsulate SQLAlchemy queries for each domain area. They never
commit; services decide the transaction boundaries.
"""
