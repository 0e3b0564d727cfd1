from datetime import datetime
from typing import Any, Dict, Optional

from nanoid import generate
from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Document(Base):
    """A single document in the hierarchical store, addressed by its full path."""

    __tablename__ = "documents"

    path: Mapped[str] = mapped_column(String, primary_key=True)
    collection: Mapped[str] = mapped_column(String, nullable=False)
    doc_id: Mapped[str] = mapped_column(String, nullable=False)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (Index("documents_collection_idx", "collection"),)

    def __repr__(self) -> str:
        return f"<Document path={self.path!r}>"


class IdentityAccount(Base):
    __tablename__ = "identity_accounts"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: generate()
    )
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String, nullable=False)
    disabled: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)
    password_changed_at: Mapped[Optional[int]] = mapped_column(Integer)

    def __repr__(self) -> str:
        return f"<IdentityAccount id={self.id!r} email={self.email!r}>"


class VerificationToken(Base):
    __tablename__ = "verification_tokens"

    identifier: Mapped[str] = mapped_column(String, primary_key=True)
    token: Mapped[str] = mapped_column(String, primary_key=True)
    expires: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<VerificationToken identifier={self.identifier!r} token={self.token!r}>"
        )
