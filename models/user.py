"""
Provides the User model.

Accounts are issued and maintained by the external identity system; the chat
backend only reads the row to check the account is active and to tailor
answers to the learner's ``education_level``.

Relationships
-------------
chats : sqlalchemy.orm.relationship
    One-to-many relationship with :class:`models.chat.Chat`.
documents : sqlalchemy.orm.relationship
    One-to-many relationship with :class:`models.document.Document`.
"""

from sqlalchemy import Boolean, Column, String
from sqlalchemy.orm import relationship

from .base import BaseModel


class User(BaseModel):
    """
    Represents an authenticated account.

    :ivar email: Email address of the user. It must be unique.
    :type email: str
    :ivar first_name: Optional given name.
    :type first_name: str
    :ivar last_name: Optional family name.
    :type last_name: str
    :ivar education_level: Free-form level (e.g. "high school") used in prompts.
    :type education_level: str
    :ivar is_active: Whether the account may use the API.
    :type is_active: bool
    """

    __tablename__ = "users"

    email = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    education_level = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True)

    chats = relationship("Chat", back_populates="user")
    documents = relationship("Document", back_populates="user")
