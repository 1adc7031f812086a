"""Service layer for business logic.

Services encapsulate the certificate rules, keeping routes thin and focused
on HTTP handling.

Layer hierarchy:
    Routes (HTTP) -> Services (Business Logic) -> Repositories (Database)

Services should:
- Contain all business rules and validation
- Orchestrate calls to repositories and the renderers
- Raise domain exceptions that routes map to status codes

Services should NOT:
- Directly execute SQL queries (use repositories)
- Know about HTTP request/response details
- Commit the session (the request dependency does)
"""
