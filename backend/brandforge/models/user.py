"""
User Models

Models Included:
----------------
1. User - Tenant account: owns source documents and content vectors

Database Tables:
----------------
- users: Stores user account data

Accounts are created and authenticated by the external auth surface. This
service only reads them: to enumerate tenants for bulk vectorization jobs,
to fill job details (email, brand name), and to gate the admin API.
"""

from typing import TYPE_CHECKING

from sqlalchemy import Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship

from brandforge.db.base import BaseModel, String100, String255

if TYPE_CHECKING:
    from brandforge.models.content import SourceDocument


class User(BaseModel):
    """
    User account model.

    Table: users
    ------------
    Inherits id, created_at and updated_at from BaseModel.

    Admin Access:
    -------------
    `is_admin` gates the vectorization control surface. Inactive users are
    still indexed by bulk jobs (their content may be reactivated) but cannot
    call the API.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String255,
        unique=True,
        index=True,
        nullable=False,
        comment="User's email address. Must be unique."
    )

    name: Mapped[str] = mapped_column(
        String100,
        nullable=False,
        comment="User's display name"
    )

    brand_name: Mapped[str | None] = mapped_column(
        String255,
        nullable=True,
        comment="Primary brand name, copied into job details for operators"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether user account is active"
    )

    is_admin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether user may operate vectorization jobs"
    )

    documents: Mapped[list["SourceDocument"]] = relationship(
        "SourceDocument",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="noload",
    )

    def __repr__(self) -> str:
        return f"User(id={self.id}, email={self.email!r}, is_admin={self.is_admin})"
