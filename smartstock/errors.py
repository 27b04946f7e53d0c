class InventoryError(Exception):
    """Base class for inventory core errors."""


class NotFoundError(InventoryError):
    def __init__(self, product_id: str, what: str = "Inventory"):
        self.product_id = product_id
        super().__init__(f"{what} not found for product {product_id}")


class InsufficientStockError(InventoryError):
    def __init__(self, product_id: str, requested: int, available: int | None = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        detail = f"Insufficient stock for product {product_id}. Requested: {requested}"
        if available is not None:
            detail += f", available: {available}"
        super().__init__(detail)


class LockAcquisitionError(InventoryError):
    def __init__(self, product_id: str, attempts: int):
        self.product_id = product_id
        self.attempts = attempts
        super().__init__(f"Failed to acquire inventory lock for product {product_id} after {attempts} attempts")


class EstimationError(InventoryError):
    """The external demand estimator failed or returned something unusable."""


class NotificationDeliveryError(InventoryError):
    """The notification channel rejected or could not receive a message."""
