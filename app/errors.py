from __future__ import annotations


class UploadError(Exception):
    """Base class for failures that map to an HTTP error response."""

    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class DecodeError(UploadError):
    status_code = 400


class DuplicateProductError(UploadError):
    status_code = 400

    def __init__(self, product_id: str) -> None:
        super().__init__("Product already exists")
        self.product_id = product_id


class ProductNotFoundError(UploadError):
    status_code = 400

    def __init__(self, product_pk: str) -> None:
        super().__init__("Existing product not found")
        self.product_pk = product_pk


class PersistenceError(UploadError):
    status_code = 500


class BlobStoreConfigurationError(UploadError):
    status_code = 500


class BlobUploadError(UploadError):
    def __init__(self, message: str, *, field_name: str, filename: str | None = None) -> None:
        super().__init__(message)
        self.field_name = field_name
        self.filename = filename


class BlobDeleteError(UploadError):
    def __init__(self, message: str, *, key: str) -> None:
        super().__init__(message)
        self.key = key
