"""Multi-tenant entity/relationship store with role-scoped access control."""

__version__ = "0.1.0"
