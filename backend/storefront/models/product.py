from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship

from storefront.core.base import Base


class Product(Base):
    """
    Only the columns the catalogue needs for counts and delete checks.
    """

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    subcategory_id = Column(
        Integer,
        ForeignKey("subcategories.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    subcategory = relationship("Subcategory", back_populates="products")
