"""Storefront error types. Each carries the HTTP status it is rendered with."""

from typing import Optional


class StorefrontError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInputError(StorefrontError):
    status_code = 400


class AuthenticationError(StorefrontError):
    status_code = 401


class PermissionDeniedError(StorefrontError):
    status_code = 403


class NotFoundError(StorefrontError):
    status_code = 404


class InsufficientStockError(StorefrontError):
    status_code = 409


class EmptyCartError(StorefrontError):
    status_code = 400


class OrderCreationError(StorefrontError):
    status_code = 500


class OrderItemsError(StorefrontError):
    status_code = 500


class StockUpdateError(StorefrontError):
    status_code = 500


class BulkUpdateError(StorefrontError):
    """A staged admin save stopped partway; rows before the failure stay updated."""
    status_code = 500

    def __init__(self, message: str, updated: int = 0, status_code: Optional[int] = None):
        super().__init__(message, status_code)
        self.updated = updated


class AssistantError(StorefrontError):
    status_code = 500
