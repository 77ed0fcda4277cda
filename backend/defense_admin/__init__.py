"""Thesis defense committee administration and assignment engine."""

from .service import DefenseAdminService, OperationResult

__version__ = "0.1.0"

__all__ = ["DefenseAdminService", "OperationResult", "__version__"]
