from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.enums import FileModeEnum
from app.reconciliation import ProductState, StoredFile, VariantState

COMMON_FILE_TYPE = "commonFile"


class VariantSubmission(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str = Field(min_length=1)
    sku: str | None = None
    title: str | None = None
    image: str | None = None
    fileKey: str | None = None
    fileUrl: str | None = None
    fileName: str | None = None
    fileSize: int | None = Field(default=None, ge=0)
    download: int | None = Field(default=None, ge=0)

    def stored_file(self) -> StoredFile:
        if not self.fileKey:
            return StoredFile()
        return StoredFile(
            key=self.fileKey,
            url=self.fileUrl or "",
            name=self.fileName or "",
            size=self.fileSize or 0,
        )

    def to_variant_state(self) -> VariantState:
        return VariantState(
            variant_id=self.id,
            sku=self.sku,
            title=self.title,
            image=self.image,
            file=self.stored_file(),
            download=self.download or 0,
        )


class ProductSubmission(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str | None = None
    productId: str = Field(min_length=1)
    title: str = Field(min_length=1)
    productImage: str | None = None
    status: str | None = None
    fileType: str | None = None
    totalVariants: int = Field(default=1, ge=0)
    variants: list[VariantSubmission] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def blank_id_means_create(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("variants")
    @classmethod
    def unique_variant_ids(cls, value: list[VariantSubmission]) -> list[VariantSubmission]:
        seen: set[str] = set()
        for variant in value:
            if variant.id in seen:
                raise ValueError(f"Duplicate variant id: {variant.id}")
            seen.add(variant.id)
        return value

    @property
    def file_mode(self) -> FileModeEnum:
        if self.fileType == COMMON_FILE_TYPE:
            return FileModeEnum.common
        return FileModeEnum.variant

    @property
    def is_update(self) -> bool:
        return self.id is not None

    def to_product_state(self) -> ProductState:
        return ProductState(
            id=self.id,
            product_id=self.productId,
            name=self.title,
            product_image=self.productImage,
            status=self.status,
            file_mode=self.file_mode,
            total_variants=self.totalVariants,
            variants=tuple(variant.to_variant_state() for variant in self.variants),
        )


class UploadResponse(BaseModel):
    message: str
    status: bool = True


class ErrorResponse(BaseModel):
    error: str
