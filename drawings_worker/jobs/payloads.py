"""
Typed job payloads. Decoded once at the queue boundary; handlers never poke at raw dicts.

Older producers wrote camelCase keys (drawingSetId, sheetVersionId); both
spellings are accepted.
"""

from enum import Enum
from typing import Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ..core.errors import JobPayloadError

PAYLOAD_VERSION = 1


class JobType(str, Enum):
    PROCESS_DRAWING_SET = "process_drawing_set"
    GENERATE_DRAWING_TILES = "generate_drawing_tiles"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    version: int = PAYLOAD_VERSION


class ProcessDrawingSetPayload(_Payload):
    drawing_set_id: str = Field(
        min_length=1, validation_alias=AliasChoices("drawing_set_id", "drawingSetId")
    )
    project_id: str = Field(
        min_length=1, validation_alias=AliasChoices("project_id", "projectId")
    )
    source_file_id: str = Field(
        min_length=1, validation_alias=AliasChoices("source_file_id", "sourceFileId")
    )
    # Upload flow may pin the exact object; otherwise files.storage_path is used
    storage_path: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("storage_path", "storagePath")
    )


class GenerateDrawingTilesPayload(_Payload):
    sheet_version_id: str = Field(
        min_length=1, validation_alias=AliasChoices("sheet_version_id", "sheetVersionId")
    )


PAYLOAD_TYPES: dict[JobType, Type[_Payload]] = {
    JobType.PROCESS_DRAWING_SET: ProcessDrawingSetPayload,
    JobType.GENERATE_DRAWING_TILES: GenerateDrawingTilesPayload,
}

P = TypeVar("P", bound=_Payload)


def decode_payload(model: Type[P], raw: Optional[dict]) -> P:
    """Validate a raw JSON payload. Raises JobPayloadError naming the bad fields."""
    try:
        return model.model_validate(raw or {})
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "payload" for err in e.errors())
        raise JobPayloadError(f"Invalid {model.__name__}: {fields}") from e


class DetectionDiagnostics(BaseModel):
    method: str
    confidence: str
    source_line: Optional[str] = None
    detected_number: Optional[str] = None
    score: Optional[int] = None


class SheetVersionMetadata(BaseModel):
    """Typed view of drawing_sheet_versions.extracted_metadata."""

    model_config = ConfigDict(extra="allow")

    version: int = PAYLOAD_VERSION
    temp_png_path: Optional[str] = None
    source_hash: Optional[str] = None
    page_index: Optional[int] = None
    detection: Optional[DetectionDiagnostics] = None
