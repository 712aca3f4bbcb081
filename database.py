import sqlite3

from sqlalchemy import Column, Date, ForeignKey, Integer, String, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

import config

# Database Setup
DB_URL = config.DATABASE_URL


def make_engine(url: str = DB_URL, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, **kwargs)


engine = make_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE clauses unless asked per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# --- Models ---

class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    clearing_number = Column(String, nullable=False)
    account_number = Column(String, nullable=False)
    name = Column(String, nullable=False)
    user_defined_name = Column(String, nullable=True)

    transactions = relationship("Transaction", back_populates="account", passive_deletes=True)

    @property
    def display_name(self) -> str:
        return self.user_defined_name or self.name


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)  # as printed on the statement
    user_defined_name = Column(String, nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)

    category = relationship("Category")
    transactions = relationship("Transaction", back_populates="vendor", passive_deletes=True)

    @property
    def display_name(self) -> str:
        return self.user_defined_name or self.name


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_date = Column(Date, nullable=False, index=True)

    # Money is kept in minor units (amount * 100) so sums stay exact
    amount = Column(Integer, nullable=False)
    balance = Column(Integer, nullable=True)  # saldo column, when the bank provides one

    vendor_id = Column(Integer, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)

    vendor = relationship("Vendor", back_populates="transactions")
    account = relationship("Account", back_populates="transactions")
    category = relationship("Category")


# --- Init DB ---
def init_db(bind: Engine = None):
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
