"""SQLAlchemy-backed repository helpers.

Helpers take an ``AsyncSession`` that already has a transaction open and
never commit themselves; the calling service owns the transaction boundary.
"""
