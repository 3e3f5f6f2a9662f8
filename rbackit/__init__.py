"""Access control models, policy storage, role management and the RBAC API."""

__version__ = "0.1.0"