# app/services/exceptions.py

class ServiceError(Exception):
    """Base class for service-layer errors."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class DomainValidationError(ServiceError):
    """Invalid domain input."""
    pass


class ResourceNotFoundError(ServiceError):
    """Resource not found."""
    pass


class ConflictError(ServiceError):
    """State conflict in the operation."""
    pass


class StoreNotConfiguredError(ServiceError):
    """Raised when a store lacks the Shopify credentials the engine needs."""

    def __init__(self, store_id, missing: list[str]):
        self.store_id = store_id
        self.missing = missing
        super().__init__(
            f"Shopify integration not configured for store {store_id} (missing: {', '.join(missing)})"
        )
