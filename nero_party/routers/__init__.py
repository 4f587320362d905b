"""API routers."""
from nero_party.routers import health, party

__all__ = ["health", "party"]
