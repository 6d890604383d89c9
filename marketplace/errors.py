"""Error taxonomy shared by the services and the HTTP layer.

Services raise these; ``main.py`` renders them as
``{"detail": message, "errors": [...]}`` with ``status_code``.
"""


class MarketplaceError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: str = None, errors: list = None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class Unauthorized(MarketplaceError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(MarketplaceError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(MarketplaceError):
    status_code = 404
    default_message = "Not found"


class InvalidInput(MarketplaceError):
    status_code = 400
    default_message = "Invalid input"


class InvalidState(MarketplaceError):
    status_code = 400
    default_message = "Invalid state"


class EmptyCart(InvalidState):
    default_message = "Cart is empty"


class ProductUnavailable(InvalidState):
    def __init__(self, product_id: str, title: str = None):
        self.product_id = product_id
        super().__init__(f"Product '{title or product_id}' is not available")


class InsufficientStock(MarketplaceError):
    status_code = 400

    def __init__(self, product_id: str, title: str = None, available: int = None):
        self.product_id = product_id
        self.available = available
        message = f"Insufficient stock for product '{title or product_id}'"
        if available is not None:
            message += f" (available: {available})"
        super().__init__(message)


class SignatureInvalid(MarketplaceError):
    status_code = 400
    default_message = "Invalid signature"


class Internal(MarketplaceError):
    status_code = 500
