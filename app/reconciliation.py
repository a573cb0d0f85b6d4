from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Mapping

from app.enums import FileModeEnum


@dataclass(frozen=True)
class StoredFile:
    key: str = ""
    url: str = ""
    name: str = ""
    size: int = 0

    def __bool__(self) -> bool:
        return bool(self.key)


EMPTY_FILE = StoredFile()


@dataclass(frozen=True)
class UploadedFile:
    key: str
    url: str
    name: str
    size: int
    target_kind: FileModeEnum
    variant_id: str | None = None

    def as_stored(self) -> StoredFile:
        return StoredFile(key=self.key, url=self.url, name=self.name, size=self.size)


@dataclass(frozen=True)
class VariantState:
    variant_id: str
    sku: str | None = None
    title: str | None = None
    image: str | None = None
    file: StoredFile = EMPTY_FILE
    download: int = 0


@dataclass(frozen=True)
class ProductState:
    product_id: str
    name: str
    product_image: str | None = None
    status: str | None = None
    file_mode: FileModeEnum | None = None
    total_variants: int = 1
    variants: tuple[VariantState, ...] = ()
    id: str | None = None


@dataclass(frozen=True)
class ShippingUpdate:
    variant_id: str
    requires_shipping: bool


@dataclass(frozen=True)
class ReconciliationResult:
    product: ProductState
    previous_mode: FileModeEnum | None
    orphaned_keys: tuple[str, ...] = ()
    removed_variants: tuple[VariantState, ...] = ()
    shipping_updates: tuple[ShippingUpdate, ...] = ()


def infer_file_mode(variants: Iterable[VariantState]) -> FileModeEnum:
    """Infer the file mode of rows saved before the mode was persisted.

    A product is ``common`` when every variant points at the same non-empty key,
    which includes a single variant with a file.
    """
    keys = {variant.file.key for variant in variants}
    if len(keys) == 1 and "" not in keys:
        return FileModeEnum.common
    return FileModeEnum.variant


def resolve_previous_mode(previous: ProductState | None) -> FileModeEnum | None:
    if previous is None:
        return None
    if previous.file_mode is not None:
        return previous.file_mode
    return infer_file_mode(previous.variants)


def _first_stored_file(variants: Iterable[VariantState]) -> StoredFile | None:
    for variant in variants:
        if variant.file:
            return variant.file
    return None


def _migration_file(
    *,
    previous: ProductState | None,
    previous_mode: FileModeEnum | None,
    new_mode: FileModeEnum,
    new_common_file: UploadedFile | None,
    new_variant_files: Mapping[str, UploadedFile],
) -> StoredFile | None:
    if previous is None or previous_mode is None or previous_mode == new_mode:
        return None
    if new_mode == FileModeEnum.common:
        has_new_upload = new_common_file is not None
    else:
        has_new_upload = bool(new_variant_files)
    if has_new_upload:
        return None
    # variant -> common takes the first variant with a file; common -> variant
    # hands the shared file to every variant. Both are the first stored file.
    return _first_stored_file(previous.variants)


def _unique_keys(variants: Iterable[VariantState]) -> list[str]:
    keys: list[str] = []
    seen: set[str] = set()
    for variant in variants:
        key = variant.file.key
        if key and key not in seen:
            seen.add(key)
            keys.append(key)
    return keys


def reconcile(
    *,
    previous: ProductState | None,
    incoming: ProductState,
    new_common_file: UploadedFile | None = None,
    new_variant_files: Mapping[str, UploadedFile] | None = None,
) -> ReconciliationResult:
    """Decide which file every submitted variant ends up with.

    Resolution order per variant: a fresh upload for the active mode, the file
    migrated across a mode switch, the variant's own submitted file, the
    previously stored file of the same variant, and finally no file.

    Keys referenced by ``previous`` but by none of the finalized variants are
    reported as orphaned. Previous variants missing from the submission are
    reported as removed so their shipping flag can be reverted.
    """
    variant_uploads = dict(new_variant_files or {})
    new_mode = incoming.file_mode or FileModeEnum.variant
    previous_mode = resolve_previous_mode(previous)
    migrated = _migration_file(
        previous=previous,
        previous_mode=previous_mode,
        new_mode=new_mode,
        new_common_file=new_common_file,
        new_variant_files=variant_uploads,
    )

    previous_variants = previous.variants if previous is not None else ()
    previous_by_id: dict[str, VariantState] = {}
    for stored in previous_variants:
        previous_by_id.setdefault(stored.variant_id, stored)

    single_variant = len(incoming.variants) == 1
    finalized: list[VariantState] = []
    for submitted in incoming.variants:
        stored = previous_by_id.get(submitted.variant_id)
        upload = variant_uploads.get(submitted.variant_id)

        if new_mode == FileModeEnum.common and new_common_file is not None:
            resolved = new_common_file.as_stored()
        elif new_mode == FileModeEnum.variant and upload is not None:
            resolved = upload.as_stored()
        elif migrated is not None:
            resolved = migrated
        elif submitted.file:
            resolved = submitted.file
        elif stored is not None:
            resolved = stored.file
        else:
            resolved = EMPTY_FILE

        finalized.append(
            replace(
                submitted,
                title=incoming.name if single_variant else submitted.title,
                image=incoming.product_image if single_variant else submitted.image,
                file=resolved,
                download=stored.download if stored is not None else submitted.download,
            )
        )

    finalized_keys = set(_unique_keys(finalized))
    orphaned = tuple(key for key in _unique_keys(previous_variants) if key not in finalized_keys)

    finalized_ids = {variant.variant_id for variant in finalized}
    removed: list[VariantState] = []
    reported: set[str] = set()
    for stored in previous_variants:
        if stored.variant_id in finalized_ids or stored.variant_id in reported:
            continue
        reported.add(stored.variant_id)
        removed.append(stored)

    shipping_updates = [ShippingUpdate(variant.variant_id, True) for variant in removed]
    shipping_updates.extend(ShippingUpdate(variant.variant_id, False) for variant in finalized)

    product = replace(
        incoming,
        id=previous.id if previous is not None else incoming.id,
        file_mode=new_mode,
        variants=tuple(finalized),
    )
    return ReconciliationResult(
        product=product,
        previous_mode=previous_mode,
        orphaned_keys=orphaned,
        removed_variants=tuple(removed),
        shipping_updates=tuple(shipping_updates),
    )
