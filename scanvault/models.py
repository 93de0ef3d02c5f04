from datetime import UTC, datetime
from typing import Annotated, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

SHA256_PATTERN = r"^[0-9a-f]{64}$"
KEY_HEX_PATTERN = r"^[0-9a-f]{64}$"


class UploadRecord(BaseModel):
    """One audit entry per classified upload. Never updated after insert."""

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=lambda: uuid4().hex)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    username: str = Field(min_length=1)
    filename: str
    file_size: int = Field(ge=0)
    sha256: str = Field(pattern=SHA256_PATTERN)
    status: Literal["clean", "malicious"]
    storage_path: str | None = None

    @model_validator(mode="after")
    def _storage_path_iff_clean(self):
        if self.status == "clean" and not self.storage_path:
            raise ValueError("clean records require a storage_path")
        if self.status == "malicious" and self.storage_path is not None:
            raise ValueError("malicious records must not have a storage_path")
        return self

    def to_document(self) -> dict:
        document = self.model_dump()
        document["_id"] = document.pop("record_id")
        return document

    @classmethod
    def from_document(cls, document: dict) -> "UploadRecord":
        data = dict(document)
        data["record_id"] = str(data.pop("_id"))
        created_at = data.get("created_at")
        # Mongo returns naive UTC datetimes.
        if isinstance(created_at, datetime) and created_at.tzinfo is None:
            data["created_at"] = created_at.replace(tzinfo=UTC)
        return cls(**data)


class MaliciousScanResponse(BaseModel):
    status: Literal["malicious"] = "malicious"
    sha256: str = Field(pattern=SHA256_PATTERN)
    reason: Literal["hash match", "pattern match"]


class CleanScanResponse(BaseModel):
    status: Literal["clean"] = "clean"
    sha256: str = Field(pattern=SHA256_PATTERN)
    storage_path: str = Field(min_length=1)
    # One-time AES-256 key; custody passes to the caller with this response.
    encryption_key: str = Field(pattern=KEY_HEX_PATTERN)


ScanResponse = Annotated[
    Union[CleanScanResponse, MaliciousScanResponse],
    Field(discriminator="status"),
]
