from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_product_pk() -> str:
    return uuid4().hex


class DigitalProduct(Base):
    __tablename__ = "digital_products"

    id: Mapped[str] = mapped_column(String(length=32), primary_key=True, default=new_product_pk)
    product_id: Mapped[str] = mapped_column(String(length=255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    product_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String(length=64), nullable=True)
    file_type: Mapped[str | None] = mapped_column(String(length=16), nullable=True)
    total_variants: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    variants: Mapped[list["DigitalProductVariant"]] = relationship(
        back_populates="product",
        order_by="DigitalProductVariant.position",
        cascade="all, delete-orphan",
    )


class DigitalProductVariant(Base):
    __tablename__ = "digital_product_variants"
    __table_args__ = (
        UniqueConstraint("product_pk", "variant_id", name="uq_digital_product_variant"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_pk: Mapped[str] = mapped_column(
        ForeignKey("digital_products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    variant_id: Mapped[str] = mapped_column(String(length=255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    image: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_key: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    download: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    product: Mapped[DigitalProduct] = relationship(back_populates="variants")


class ShopInstallation(Base):
    __tablename__ = "shop_installations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop_domain: Mapped[str] = mapped_column(String(length=255), unique=True, nullable=False, index=True)
    admin_access_token: Mapped[str] = mapped_column(Text, nullable=False)
    installed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    uninstalled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
