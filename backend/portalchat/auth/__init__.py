"""Authentication module (JWT bearer tokens).

Services:
    - TokenService: verifies portal-issued JWTs and resolves their subject.
    - get_current_user: FastAPI dependency for HTTP endpoints.
"""
