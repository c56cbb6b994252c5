"""Address model (read-only from the core's point of view)."""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, IdType


class Address(Base):
    """Shipping address owned by a user."""

    __tablename__ = 'address'

    id = Column(IdType, primary_key=True, autoincrement=True)
    user_id = Column(IdType, ForeignKey('app_user.id'), nullable=False, index=True)
    recipient_name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True)
    street = Column(String(255), nullable=False)
    ward = Column(String(120), nullable=True)
    district = Column(String(120), nullable=True)
    province = Column(String(120), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    user = relationship('User', back_populates='addresses')

    @property
    def display_location(self):
        """Single-line location, most specific part first."""
        parts = [self.street, self.ward, self.district, self.province]
        return ', '.join(p for p in parts if p)

    def to_dict(self):
        return {
            'id': self.id,
            'recipient_name': self.recipient_name,
            'phone': self.phone,
            'location': self.display_location,
        }

    def __repr__(self):
        return f"<Address(id={self.id}, user_id={self.user_id})>"
