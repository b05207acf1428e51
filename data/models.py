"""
Data models for Script Asset Mirror
Asset plans, upload results, progress events and the run result
"""
from typing import Optional, List, Any, Union, Literal
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.helpers import is_likely_url

# Marks companion thumbnail rows; the rewriter keys on it, never change it
THUMBNAIL_MARKER = "(256px)"


class EntryType(str, Enum):
    """Kind of script entry an asset belongs to"""
    CHARACTER = "character"
    META = "meta"


class StorageMode(str, Enum):
    """Storage backend selected for a run"""
    S3 = "s3"
    LOCAL = "local"


class AssetPlan(BaseModel):
    """An intended single-asset fetch, created by the planner and never mutated"""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    scriptIndex: int = Field(..., ge=0, description="Position of the owning entry in the script")
    entryType: EntryType = Field(..., description="Character or meta entry")
    entryId: str = Field(..., description="Entry identifier")
    entryName: str = Field(..., description="Entry display name")
    field: str = Field(..., min_length=1, description="Attribute holding the URL")
    originalUrl: str = Field(..., description="Absolute http(s) source URL")
    fileBaseName: str = Field(..., min_length=1, description="Storage name stem")
    variantIndex: Optional[int] = Field(None, ge=0, description="Position inside a multi-valued image")
    variantLabel: Optional[str] = Field(None, description="Alignment or singleton label")

    @field_validator('originalUrl')
    @classmethod
    def validate_original_url(cls, v):
        if not is_likely_url(v):
            raise ValueError("originalUrl must be an absolute http(s) URL")
        return v

    @property
    def slot(self) -> tuple:
        """(scriptIndex, variantIndex-or-0) pairing used to match results back"""
        return (self.scriptIndex, self.variantIndex or 0)

    @property
    def is_character_image(self) -> bool:
        return self.entryType == EntryType.CHARACTER.value and self.field == "image"


class AssetUploadResult(AssetPlan):
    """A plan plus where its bytes ended up"""
    storageKey: str = Field(..., min_length=1)
    publicUrl: str = Field(..., min_length=1)
    contentType: str = Field(default="application/octet-stream")
    size: int = Field(default=0, ge=0, description="Bytes uploaded; 0 on a dedup hit")
    deduplicated: bool = Field(default=False, description="Object already existed, upload skipped")

    @property
    def is_thumbnail(self) -> bool:
        return bool(self.variantLabel) and THUMBNAIL_MARKER in self.variantLabel

    def to_manifest_row(self) -> dict:
        return self.model_dump(mode='json', exclude_none=True)


class StoredObject(BaseModel):
    """Where a storage put landed"""
    storageKey: str
    publicUrl: str


class PlanSummaryEvent(BaseModel):
    type: Literal["planSummary"] = "planSummary"
    totalAssets: int = Field(..., ge=0)
    scriptName: str


class AssetStartEvent(BaseModel):
    type: Literal["assetStart"] = "assetStart"
    plan: AssetPlan


class AssetStoredEvent(BaseModel):
    type: Literal["assetStored"] = "assetStored"
    plan: AssetPlan
    asset: AssetUploadResult


ProcessingEvent = Union[PlanSummaryEvent, AssetStartEvent, AssetStoredEvent]


class ProcessedScriptResult(BaseModel):
    """Everything a completed run reports back to its caller"""
    model_config = ConfigDict(use_enum_values=True)

    scriptName: str
    scriptSlug: str
    storagePrefix: str
    storageMode: StorageMode
    bucket: Optional[str] = None
    localBasePath: Optional[str] = None
    processedAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    manifestKey: str
    manifestUrl: str
    originalScriptKey: str
    originalScriptUrl: str
    rewrittenScriptKey: str
    rewrittenScriptUrl: str
    rewritten256ScriptKey: str
    rewritten256ScriptUrl: str
    assets: List[AssetUploadResult] = Field(default_factory=list)
    rewrittenScript: List[Any] = Field(default_factory=list)
    rewritten256Script: List[Any] = Field(default_factory=list)
    proxyEnabled: bool = False
    proxiesUsed: List[str] = Field(default_factory=list)

    @property
    def upload_count(self) -> int:
        return sum(1 for asset in self.assets if not asset.deduplicated)

    def to_payload(self) -> dict:
        payload = self.model_dump(mode='json', exclude={'assets'})
        payload['assets'] = [asset.to_manifest_row() for asset in self.assets]
        return payload


__all__ = [
    'THUMBNAIL_MARKER', 'EntryType', 'StorageMode',
    'AssetPlan', 'AssetUploadResult', 'StoredObject',
    'PlanSummaryEvent', 'AssetStartEvent', 'AssetStoredEvent', 'ProcessingEvent',
    'ProcessedScriptResult'
]
