from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.enums import FileModeEnum
from app.errors import DuplicateProductError, PersistenceError
from app.models import DigitalProduct, DigitalProductVariant, ShopInstallation
from app.reconciliation import ProductState, StoredFile, VariantState


def _file_mode_from_record(value: str | None) -> FileModeEnum | None:
    if not value:
        return None
    try:
        return FileModeEnum(value)
    except ValueError:
        return None


def to_product_state(record: DigitalProduct) -> ProductState:
    return ProductState(
        id=record.id,
        product_id=record.product_id,
        name=record.name,
        product_image=record.product_image,
        status=record.status,
        file_mode=_file_mode_from_record(record.file_type),
        total_variants=record.total_variants,
        variants=tuple(
            VariantState(
                variant_id=variant.variant_id,
                sku=variant.sku,
                title=variant.title,
                image=variant.image,
                file=StoredFile(
                    key=variant.file_key or "",
                    url=variant.file_url or "",
                    name=variant.file_name or "",
                    size=variant.file_size or 0,
                ),
                download=variant.download or 0,
            )
            for variant in record.variants
        ),
    )


def _variant_records(state: ProductState) -> list[DigitalProductVariant]:
    return [
        DigitalProductVariant(
            position=position,
            variant_id=variant.variant_id,
            sku=variant.sku,
            title=variant.title,
            image=variant.image,
            file_key=variant.file.key,
            file_url=variant.file.url,
            file_name=variant.file.name,
            file_size=variant.file.size,
            download=variant.download,
        )
        for position, variant in enumerate(state.variants)
    ]


class DigitalProductsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, product_pk: str) -> Optional[DigitalProduct]:
        stmt = (
            select(DigitalProduct)
            .options(selectinload(DigitalProduct.variants))
            .where(DigitalProduct.id == product_pk)
        )
        return self.session.scalars(stmt).first()

    def find_by_product_id(self, product_id: str, *, exclude_pk: str | None = None) -> Optional[DigitalProduct]:
        stmt = select(DigitalProduct).where(DigitalProduct.product_id == product_id)
        if exclude_pk:
            stmt = stmt.where(DigitalProduct.id != exclude_pk)
        return self.session.scalars(stmt.limit(1)).first()

    def ensure_unique_product_id(self, product_id: str, *, exclude_pk: str | None = None) -> None:
        if self.find_by_product_id(product_id, exclude_pk=exclude_pk) is not None:
            raise DuplicateProductError(product_id)

    def save(self, state: ProductState, *, existing_pk: str | None = None) -> DigitalProduct:
        """Create the product, or overwrite it and its variant list when ``existing_pk`` is given."""
        fields = {
            "product_id": state.product_id,
            "name": state.name,
            "product_image": state.product_image,
            "status": state.status,
            "file_type": state.file_mode.value if state.file_mode else None,
            "total_variants": state.total_variants,
        }
        try:
            if existing_pk is None:
                product = DigitalProduct(**fields)
                self.session.add(product)
            else:
                product = self.get(existing_pk)
                if product is None:
                    raise PersistenceError("Failed to save digital product")
                for key, value in fields.items():
                    setattr(product, key, value)
                # variant ids are unique per product; old rows must be gone before re-inserting.
                product.variants.clear()
                self.session.flush()
            product.variants.extend(_variant_records(state))
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"Failed to save digital product: {exc.__class__.__name__}") from exc
        except PersistenceError:
            self.session.rollback()
            raise
        self.session.refresh(product)
        return product


class ShopInstallationsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_shop_domain(self, shop_domain: str) -> Optional[ShopInstallation]:
        stmt = select(ShopInstallation).where(
            ShopInstallation.shop_domain == shop_domain,
            ShopInstallation.uninstalled_at.is_(None),
        )
        return self.session.scalars(stmt).first()
