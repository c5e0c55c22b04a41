from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

# Fields every source kind carries; the rest is source specific
COMMON_FIELDS = {
    "id",
    "source",
    "timestamp",
    "message",
    "level",
    "project_id",
    "deployment_id",
    "request_id",
    "host",
    "environment",
}

# Low-cardinality fields safe to use as index labels
LABEL_FIELDS = ("source", "project_id", "deployment_id", "environment", "level")


# ----------------------------
# Record schemas
# ----------------------------
class LogRecord(BaseModel):
    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    source: str
    timestamp: int                # epoch ms, as sent by the platform
    message: Optional[str] = None
    id: Optional[str] = None
    level: Optional[str] = None   # info/warning/error where the platform sends one
    project_id: Optional[str] = None
    deployment_id: Optional[str] = None
    request_id: Optional[str] = None
    host: Optional[str] = None
    environment: Optional[str] = None

    @property
    def payload(self) -> Dict[str, Any]:
        """Source-specific fields plus anything the platform added that we don't model."""
        return self.model_dump(by_alias=True, exclude=COMMON_FIELDS, exclude_none=True)

    def labels(self) -> Dict[str, str]:
        out = {}
        for name in LABEL_FIELDS:
            val = getattr(self, name)
            if val:
                out[name] = str(val)
        return out

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class BuildRecord(LogRecord):
    source: Literal["build"]
    build_id: Optional[str] = None
    entrypoint: Optional[str] = None


class StaticRecord(LogRecord):
    source: Literal["static"]
    path: Optional[str] = None
    status_code: Optional[int] = None
    proxy: Dict[str, Any] = Field(default_factory=dict)


class LambdaRecord(LogRecord):
    source: Literal["lambda"]
    path: Optional[str] = None
    entrypoint: Optional[str] = None
    status_code: Optional[int] = None
    execution_region: Optional[str] = None
    proxy: Dict[str, Any] = Field(default_factory=dict)


class EdgeRecord(LogRecord):
    source: Literal["edge"]
    path: Optional[str] = None
    entrypoint: Optional[str] = None
    status_code: Optional[int] = None
    execution_region: Optional[str] = None
    proxy: Dict[str, Any] = Field(default_factory=dict)


class ExternalRecord(LogRecord):
    source: Literal["external"]
    path: Optional[str] = None
    status_code: Optional[int] = None
    destination: Optional[str] = None
    proxy: Dict[str, Any] = Field(default_factory=dict)


Record = Annotated[
    Union[BuildRecord, StaticRecord, LambdaRecord, EdgeRecord, ExternalRecord],
    Field(discriminator="source"),
]

RECORD_ADAPTER: TypeAdapter = TypeAdapter(Record)


@dataclass
class Batch:
    records: List[LogRecord] = field(default_factory=list)
    failures: int = 0
    payload_error: Optional[str] = None

    def __len__(self) -> int:
        return len(self.records)
