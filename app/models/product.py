"""Product model."""
from sqlalchemy import Column, String, Boolean, Integer, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigIntId


class Product(Base):
    """Product owning a packaging hierarchy."""

    __tablename__ = 'product'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    sku = Column(String, nullable=True, unique=True)
    name = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    # Bumped on every packaging add/update/delete (optimistic concurrency)
    hierarchy_version = Column(Integer, nullable=False, default=1, server_default='1')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    packagings = relationship('PackagingType', back_populates='product', order_by='PackagingType.level')

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}')>"

    @property
    def active_packagings(self):
        return [p for p in self.packagings if p.is_active]
