"""
Schemas module - Request/Response schemas for API endpoints.

Difference from models:
- Models: domain enumerations shared by services and routes
- Schemas: API contract (what client sends/receives)

All schemas live in hireledger.schemas.schemas.
"""
