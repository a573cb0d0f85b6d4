from enum import Enum


class FileModeEnum(str, Enum):
    common = "common"
    variant = "variant"


class UploadStageEnum(str, Enum):
    decoding = "decoding"
    duplicate_check = "duplicate_check"
    reconciling = "reconciling"
    persisting = "persisting"
    syncing_storefront = "syncing_storefront"
    responding = "responding"
