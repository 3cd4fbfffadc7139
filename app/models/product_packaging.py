"""Packaging type model (one node of a product's packaging hierarchy)."""
from decimal import Decimal
from sqlalchemy import Column, BigInteger, String, Numeric, ForeignKey, Boolean, Integer, JSON, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigIntId
from app.services.packaging_nodes import Dimensions, PackagingNode


class PackagingType(Base):
    """
    Packaging type (e.g., Unit, Box of 12, Pallet of 240).

    parent_packaging_id points at the packaging this one is built from;
    the base unit (base_unit_quantity = 1) has no parent.
    """
    __tablename__ = 'packaging_types'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False, index=True)
    name = Column(String(100), nullable=False)  # e.g., "Caja x 12"
    barcode = Column(String(255), nullable=True, index=True)
    base_unit_quantity = Column(Numeric(10, 3), nullable=False)  # e.g., 12
    is_base_unit = Column(Boolean, nullable=False, default=False)
    parent_packaging_id = Column(BigInteger, ForeignKey('packaging_types.id'), nullable=True)
    level = Column(Integer, nullable=False, default=0)
    dimensions = Column(JSON, nullable=True)  # {"length": .., "width": .., "height": ..}
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    product = relationship('Product', back_populates='packagings')
    parent = relationship('PackagingType', remote_side=[id])

    def __repr__(self):
        return f"<PackagingType(id={self.id}, name='{self.name}', qty={self.base_unit_quantity})>"

    def to_node(self) -> PackagingNode:
        """Immutable snapshot for the engine."""
        return PackagingNode(
            id=self.id,
            product_id=self.product_id,
            name=self.name,
            base_unit_quantity=Decimal(str(self.base_unit_quantity)),
            is_base_unit=bool(self.is_base_unit),
            parent_id=self.parent_packaging_id,
            level=self.level if self.level is not None else 0,
            barcode=self.barcode,
            dimensions=Dimensions.from_dict(self.dimensions),
            is_active=bool(self.is_active),
        )
