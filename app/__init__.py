"""Broker campaign progress backend.

Subpackages: ``api`` (FastAPI routers), ``models`` (ORM, schemas, domain
records), ``services`` (progress engine and recalculation), ``jobs``
(queue, worker, periodic sweep) and ``utils``.
"""

__all__: list[str] = []
