"""SQLAlchemy database models."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from brickprice.config import settings

PLACEHOLDER_IMAGE = settings.placeholder_image


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Product(Base):
    """A tracked LEGO set (or a not-yet-identified listing under a synthetic id)."""

    __tablename__ = "products"

    # Set number ("75394") when known, synthetic ("rk-12345", "amzn-b0abc12345") otherwise
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[str] = mapped_column(
        Text, default=PLACEHOLDER_IMAGE, nullable=False
    )
    # MSRP, only used as a plausibility anchor when scoring scraped prices
    reference_price_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    lego_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    # Relationships
    offers: Mapped[list["Offer"]] = relationship(
        "Offer", back_populates="product", cascade="all, delete-orphan"
    )


class Offer(Base):
    """Latest known offer for a product at one retailer channel."""

    __tablename__ = "offers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("products.id"), nullable=False
    )
    retailer: Mapped[str] = mapped_column(String(32), nullable=False)
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    in_stock: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    # Relationships
    product: Mapped["Product"] = relationship("Product", back_populates="offers")

    __table_args__ = (
        UniqueConstraint("product_id", "retailer", name="uq_offer_product_retailer"),
    )


class PriceHistory(Base):
    """Change log of price/stock per product and retailer."""

    __tablename__ = "price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    retailer: Mapped[str] = mapped_column(String(32), nullable=False)
    price_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    in_stock: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )


class Click(Base):
    """Aggregate click counter per product and retailer."""

    __tablename__ = "clicks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    retailer: Mapped[str] = mapped_column(String(32), nullable=False)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("product_id", "retailer", name="uq_click_product_retailer"),
    )


class OutboundClick(Base):
    """Individual outbound affiliate click, referenced by conversions."""

    __tablename__ = "outbound_clicks"

    cid: Mapped[str] = mapped_column(String(64), primary_key=True)
    product_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    retailer: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    conversion: Mapped[Optional["AffiliateConversion"]] = relationship(
        "AffiliateConversion", back_populates="click", uselist=False
    )


class AffiliateConversion(Base):
    """Commission reported by an affiliate network for an outbound click."""

    __tablename__ = "affiliate_conversions"

    cid: Mapped[str] = mapped_column(
        String(64), ForeignKey("outbound_clicks.cid"), primary_key=True
    )
    network: Mapped[str] = mapped_column(String(32), default="rakuten", nullable=False)
    commission_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sale_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    click: Mapped["OutboundClick"] = relationship(
        "OutboundClick", back_populates="conversion"
    )
