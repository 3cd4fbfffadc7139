"""Stock item model (stock of one packaging at one location)."""
from decimal import Decimal
from sqlalchemy import Column, BigInteger, Numeric, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigIntId
from app.services.packaging_nodes import StockRow


class StockItem(Base):
    """Quantity of a packaging stored at a location, in the packaging's own unit."""

    __tablename__ = 'stock_items'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    location_id = Column(BigInteger, nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False, index=True)
    packaging_type_id = Column(BigInteger, ForeignKey('packaging_types.id'), nullable=False, index=True)
    quantity = Column(Numeric(10, 3), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    packaging = relationship('PackagingType')

    def __repr__(self):
        return (
            f"<StockItem(id={self.id}, location_id={self.location_id}, "
            f"packaging_type_id={self.packaging_type_id}, quantity={self.quantity})>"
        )

    def to_row(self) -> StockRow:
        return StockRow(
            location_id=self.location_id,
            packaging_id=self.packaging_type_id,
            quantity=Decimal(str(self.quantity)),
        )
