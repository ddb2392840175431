from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base
from datetime import date, datetime


class Topic(Base):
    __tablename__ = "topics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    author_name: Mapped[str | None] = mapped_column(Text)
    author_email_address: Mapped[str | None] = mapped_column(Text)
    written_on: Mapped[date | None] = mapped_column(Date)
    book_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("books.id", ondelete="SET NULL"))
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_topics_author_name", "author_name"),
    )


class Book(Base):
    """Carries both the modern (_at) and legacy (_on) timestamp pairs."""
    __tablename__ = "books"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    publisher: Mapped[str | None] = mapped_column(Text)
    author_name: Mapped[str] = mapped_column(Text, nullable=False)
    for_sale: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Group(Base):
    # "order" is a reserved word on every backend
    __tablename__ = "group"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order: Mapped[str | None] = mapped_column(Text)


# Core table without a mapped class or timestamp columns
widgets = Table(
    "widgets",
    Base.metadata,
    Column("w_id", BigInteger, primary_key=True, autoincrement=False),
    Column("data", Text),
)
