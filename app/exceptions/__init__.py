"""Custom exceptions for the packaging hierarchy service."""

class PackagingError(Exception):
    """Base exception for all application errors."""
    code = 'INTERNAL_ERROR'

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['code'] = self.code
        rv['status'] = 'error'
        return rv

class NotFoundError(PackagingError):
    """Raised when a product, packaging or barcode is not found."""
    code = 'NOT_FOUND'

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)

class InvalidArgumentError(PackagingError):
    """Raised for negative quantities and malformed input."""
    code = 'INVALID_ARGUMENT'

    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)

class CrossProductConversionError(PackagingError):
    """Raised when converting between packagings of different products."""
    code = 'CROSS_PRODUCT_CONVERSION'

    def __init__(self, from_product_id, to_product_id):
        message = (
            f"Cannot convert between packagings of different products "
            f"({from_product_id} -> {to_product_id})"
        )
        super().__init__(message, 400, {
            'from_product_id': from_product_id,
            'to_product_id': to_product_id,
        })

class ConflictError(PackagingError):
    """Raised when a mutation conflicts with existing state."""
    code = 'CONFLICT'

    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)

class InvalidHierarchyError(PackagingError):
    """Raised when a structurally invalid tree blocks an operation."""
    code = 'INVALID_HIERARCHY'

    def __init__(self, product_id, report):
        self.product_id = product_id
        self.report = report
        codes = ', '.join(sorted({issue.code for issue in report.errors}))
        message = f"Packaging hierarchy of product {product_id} is invalid: {codes}"
        super().__init__(message, 422, {'validation': report.to_dict()})
