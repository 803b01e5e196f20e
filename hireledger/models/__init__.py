"""
Models module - internal data structures.

Difference from schemas:
- Models: domain enumerations shared by services and routes
- Schemas: API contract (what client sends/receives)
"""

from hireledger.models.enums import *  # noqa: F401,F403
