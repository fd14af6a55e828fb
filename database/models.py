"""
Meu Carrim - SQLAlchemy ORM Models
Supports both SQLite (development) and PostgreSQL (production)
"""

import os
from datetime import datetime
from typing import Optional, Tuple
import uuid

from sqlalchemy import (
    create_engine,
    Column,
    String,
    Text,
    Float,
    Integer,
    DateTime,
    ForeignKey,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import (
    declarative_base,
    relationship,
    sessionmaker,
    Session,
)
from sqlalchemy.sql import func

from .errors import InvalidArgumentError

# Configuration
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite:///./meu_carrim.db"
)


Base = declarative_base()


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid.uuid4())


# =============================================================================
# ENUMS
# =============================================================================

SOURCE_TYPES = ("csv", "excel", "manual")
INGESTION_STATUSES = ("pending", "processing", "completed", "failed", "partial")


# =============================================================================
# MODELS
# =============================================================================


class Category(Base):
    """Product categories (Frutas e Verduras, Laticínios, ...)."""

    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text)
    color = Column(String(20))
    icon = Column(String(20))
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    products = relationship("Product", back_populates="category")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "icon": self.icon,
        }


class Product(Base):
    """A product users buy and record prices for."""

    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text)
    image = Column(String(500))
    category_id = Column(
        String(36),
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    category = relationship("Category", back_populates="products")
    price_history = relationship(
        "PriceHistory",
        back_populates="product",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_products_category", "category_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image": self.image,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
        }


class Market(Base):
    """A market (supermarket, grocery store) with an optional location."""

    __tablename__ = "markets"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    address = Column(Text)
    city = Column(String(255))
    state = Column(String(100))
    zip_code = Column(String(20))

    # Either both set or both NULL
    latitude = Column(Float)
    longitude = Column(Float)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    price_history = relationship("PriceHistory", back_populates="market")

    __table_args__ = (
        CheckConstraint(
            "(latitude IS NULL AND longitude IS NULL) OR "
            "(latitude IS NOT NULL AND longitude IS NOT NULL)",
            name="ck_market_coordinate_pair"
        ),
        CheckConstraint(
            "latitude IS NULL OR (latitude >= -90 AND latitude <= 90)",
            name="ck_market_latitude"
        ),
        CheckConstraint(
            "longitude IS NULL OR (longitude >= -180 AND longitude <= 180)",
            name="ck_market_longitude"
        ),
        Index("idx_markets_name", "name"),
        Index("idx_markets_city", "city"),
    )

    @property
    def location(self) -> Optional[Tuple[float, float]]:
        """(latitude, longitude) or None when the market has no coordinates."""
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    def set_location(
        self,
        latitude: Optional[float],
        longitude: Optional[float],
    ):
        """Set or clear both coordinates at once."""
        if (latitude is None) != (longitude is None):
            raise InvalidArgumentError(
                "latitude and longitude must be provided together"
            )
        self.latitude = latitude
        self.longitude = longitude

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "price_history_count": len(self.price_history),
        }


class PriceHistory(Base):
    """A single recorded price of a product at a market on a date."""

    __tablename__ = "price_history"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    product_id = Column(
        String(36),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False
    )
    market_id = Column(
        String(36),
        ForeignKey("markets.id", ondelete="CASCADE"),
        nullable=False
    )

    price = Column(Float, nullable=False)
    purchase_date = Column(DateTime, nullable=False, default=datetime.now)
    created_at = Column(DateTime, default=func.now())

    # Relationships
    product = relationship("Product", back_populates="price_history")
    market = relationship("Market", back_populates="price_history")

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_price_positive"),
        Index("idx_price_history_product_date", "product_id", "purchase_date"),
        Index("idx_price_history_market", "market_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "price": self.price,
            "purchase_date": self.purchase_date.isoformat() if self.purchase_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "product": {
                "id": self.product_id,
                "name": self.product.name if self.product else None,
                "image": self.product.image if self.product else None,
            },
            "market": {
                "id": self.market_id,
                "name": self.market.name if self.market else None,
                "city": self.market.city if self.market else None,
            },
        }


class IngestionLog(Base):
    """Tracks bulk import operations."""

    __tablename__ = "ingestion_logs"

    log_id = Column(String(36), primary_key=True, default=generate_uuid)
    source_type = Column(String(20), nullable=False)
    source_name = Column(String(500), nullable=False)
    data_type = Column(String(30), nullable=False)

    status = Column(String(20), default="pending")

    records_total = Column(Integer, default=0)
    records_success = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)
    records_skipped = Column(Integer, default=0)

    error_messages = Column(Text)
    warnings = Column(Text)

    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'partial')",
            name="ck_ingestion_status"
        ),
    )

    def to_dict(self) -> dict:
        return {
            "log_id": self.log_id,
            "source_type": self.source_type,
            "source_name": self.source_name,
            "data_type": self.data_type,
            "status": self.status,
            "records_total": self.records_total,
            "records_success": self.records_success,
            "records_failed": self.records_failed,
            "records_skipped": self.records_skipped,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


# =============================================================================
# DATABASE INITIALIZATION
# =============================================================================


def get_engine(database_url: Optional[str] = None):
    """Create database engine with appropriate settings."""
    url = database_url or DATABASE_URL

    if url.startswith("postgresql"):
        # PostgreSQL production settings
        return create_engine(
            url,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            echo=False,
        )
    else:
        # SQLite development settings
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=False,
        )


def get_session(engine=None) -> Session:
    """Create a new database session."""
    if engine is None:
        engine = get_engine()
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return SessionLocal()


def init_database(database_url: Optional[str] = None):
    """Initialize database tables."""
    engine = get_engine(database_url)
    Base.metadata.create_all(bind=engine)
    return engine


if __name__ == "__main__":
    # Initialize database when run directly
    print(f"Initializing database: {DATABASE_URL}")
    engine = init_database()
    print("Database initialized successfully!")
