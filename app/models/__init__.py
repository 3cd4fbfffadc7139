"""Models package - exports all SQLAlchemy models."""
from app.models.product import Product
from app.models.product_packaging import PackagingType
from app.models.stock_item import StockItem

__all__ = [
    'Product', 'PackagingType', 'StockItem',
]
