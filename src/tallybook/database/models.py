"""SQLAlchemy models for tallybook database."""

from datetime import datetime, UTC
from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    ForeignKey,
    DateTime,
    Date,
    Numeric,
    Boolean,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session

Base = declarative_base()


class Account(Base):
    """Ledger account model."""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    account_type = Column(String, nullable=False)
    unit = Column(String, default="USD", nullable=False)
    parent_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    description = Column(String, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)


class Transaction(Base):
    """Transaction header model. Entries live in their own table."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True)
    date = Column(Date, nullable=False, index=True)
    description = Column(String, nullable=False)
    reference = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    is_balanced = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)


class Entry(Base):
    """Entry model; ``position`` keeps the order within the transaction."""

    __tablename__ = "entries"

    id = Column(Integer, primary_key=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    amount = Column(Numeric(18, 6), nullable=False)
    side = Column(String, nullable=False)
    unit = Column(String, nullable=False)
    description = Column(String, nullable=True)
    generated = Column(Boolean, default=False, nullable=False)


class Rule(Base):
    """Rule model.

    The action variant is stored in ``rule_type``; only the columns of that
    variant are populated.
    """

    __tablename__ = "rules"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    pattern = Column(String, nullable=False)
    rule_type = Column(String, nullable=False)
    source_account_ids = Column(JSON, nullable=False, default=list)
    entry_side = Column(String, nullable=False, default="both")
    auto_apply = Column(Boolean, nullable=False, default=True)
    replacement = Column(String, nullable=True)
    destinations = Column(JSON, nullable=True)
    counterpart_pattern = Column(String, nullable=True)
    counterpart_account_ids = Column(JSON, nullable=True)
    max_date_difference = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create a SQLAlchemy session factory."""
    engine = create_engine(database_url, echo=False)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
