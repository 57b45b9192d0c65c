"""
Typed errors raised by the stock ledger and the engines built on top of it.

Services raise these unchanged; only the HTTP layer (main.py) translates them
into responses. Anything that is not an InventoryError is an infrastructure
failure.

    InventoryError
    +-- ValidationError
    |   +-- SameLocationError
    |   +-- InactiveLocationError
    |   +-- LocationNotEmptyError
    |   +-- DuplicateError
    |   +-- OrderStateError
    |   +-- TransactionTimeoutError
    +-- NotFoundError
    +-- InsufficientStockError
    +-- ConflictError
    +-- ConfigurationError
    +-- AppendOnlyViolation
"""

from typing import Any, Dict, Optional


class InventoryError(Exception):
    code = "inventory_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.message, "details": self.details}


class ValidationError(InventoryError):
    code = "validation_error"


class NotFoundError(InventoryError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} not found", entity=entity, id=str(entity_id))
        self.entity = entity
        self.entity_id = entity_id


class InsufficientStockError(InventoryError):
    code = "insufficient_stock"

    def __init__(self, product_id: Any, location_id: Optional[Any], available: int, requested: int):
        super().__init__(
            f"Insufficient stock. Available={available} requested={requested}",
            product_id=str(product_id),
            location_id=str(location_id) if location_id else None,
            available=available,
            requested=requested,
        )
        self.available = available
        self.requested = requested


class SameLocationError(ValidationError):
    code = "same_location"

    def __init__(self, location_id: Any):
        super().__init__("Cannot transfer stock to the same location", location_id=str(location_id))


class InactiveLocationError(ValidationError):
    code = "inactive_location"

    def __init__(self, location_id: Any):
        super().__init__("Location is not active", location_id=str(location_id))


class LocationNotEmptyError(ValidationError):
    code = "location_not_empty"


class DuplicateError(ValidationError):
    code = "duplicate"


class OrderStateError(ValidationError):
    code = "invalid_order_state"


class TransactionTimeoutError(ValidationError):
    code = "transaction_timeout"


class ConflictError(InventoryError):
    code = "conflict"


class ConfigurationError(InventoryError):
    code = "configuration_error"


class AppendOnlyViolation(InventoryError):
    code = "append_only"
