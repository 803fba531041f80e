"""
Core Application - Infrastructure & Base Classes

Generic, reusable building blocks shared by the domain apps. No wallet or
messaging logic lives here.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError: Input validation failures
    - NotFoundError: Resource not found
    - ConflictError: State conflicts (duplicates, lock contention)

Helpers (import from core.helpers):
    - normalize_phone_number: Digits-only phone numbers
    - generate_reference: Prefixed unique references

Note:
    Django models and model mixins are NOT imported here to avoid
    AppRegistryNotReady errors. Import them directly from their modules.
"""

# Exceptions (no Django dependencies)
from .exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

# Helpers (no Django dependencies)
from .helpers import generate_reference, normalize_phone_number

# Services (no Django model dependencies)
from .services import BaseService, ServiceResult

__all__ = [
    # Services
    "BaseService",
    "ServiceResult",
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    # Helpers
    "generate_reference",
    "normalize_phone_number",
]
