"""User model."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, IdType


class User(Base):
    """Shop customer. Credentials and profile management live outside the core."""

    __tablename__ = 'app_user'

    id = Column(IdType, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(255), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    addresses = relationship('Address', back_populates='user')
    cart = relationship('Cart', uselist=False, back_populates='user')

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"
