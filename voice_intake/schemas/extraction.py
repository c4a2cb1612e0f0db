"""
Data models for structured data extracted from a voice transcript.

Extractions are a tagged variant keyed by ``kind``. Normalization lives in
the validators so a blob read back from the processing log goes through
exactly the same default-filling as a fresh model answer.
"""

import math
from datetime import date
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from voice_intake.text_utils import fold_text

EXTRACTION_SCHEMA_VERSION = 1

_TRUTHY = {"true", "yes", "si", "sí", "1", "y"}


class RecordKind(str, Enum):
    FAILURE = "failure"
    PURCHASE = "purchase"


class FailureCategory(str, Enum):
    MECHANICAL = "MECHANICAL"
    ELECTRICAL = "ELECTRICAL"
    HYDRAULIC = "HYDRAULIC"
    PNEUMATIC = "PNEUMATIC"
    OTHER = "OTHER"


class PurchaseCategory(str, Enum):
    SPARE_PARTS = "SPARE_PARTS"
    CONSUMABLES = "CONSUMABLES"
    TOOLS = "TOOLS"
    SERVICES = "SERVICES"
    OTHER = "OTHER"


class StatedUrgency(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


# Spanish labels the model tends to echo back from the locale prompt
_CATEGORY_ALIASES: dict[str, str] = {
    "MECANICA": "MECHANICAL",
    "ELECTRICA": "ELECTRICAL",
    "HIDRAULICA": "HYDRAULIC",
    "NEUMATICA": "PNEUMATIC",
    "OTRA": "OTHER",
    "REPUESTOS": "SPARE_PARTS",
    "INSUMOS": "CONSUMABLES",
    "HERRAMIENTAS": "TOOLS",
    "SERVICIOS": "SERVICES",
    "BAJA": "LOW",
    "ALTA": "HIGH",
    "URGENTE": "URGENT",
}


def coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _normalize_enum(value: Any, enum_cls: type[Enum], default: Enum) -> Enum:
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return default
    key = fold_text(value).upper().replace(" ", "_")
    key = _CATEGORY_ALIASES.get(key, key)
    try:
        return enum_cls(key)
    except ValueError:
        return default


def _clean_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    cleaned: list[str] = []
    for item in value:
        if item is None:
            continue
        text = str(item).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ExtractedDataBase(BaseModel):
    """Fields shared by every record kind."""

    schema_version: int = EXTRACTION_SCHEMA_VERSION
    primary_identifier: str = Field(min_length=1)
    secondary_identifiers: list[str] = Field(default_factory=list)
    title: str = Field(min_length=1)
    description: str = ""
    symptoms: list[str] = Field(default_factory=list)
    sub_entity_identifier: Optional[str] = None
    confidence: int = Field(default=50, ge=0, le=100)
    notes: Optional[str] = None

    @field_validator("primary_identifier", "title", mode="before")
    @classmethod
    def _strip_required(cls, value: Any) -> Any:
        if value is None or isinstance(value, (dict, list)):
            return value
        return str(value).strip()

    @field_validator("title", mode="before")
    @classmethod
    def _truncate_title(cls, value: Any) -> Any:
        return value[:255] if isinstance(value, str) else value

    @field_validator("description", mode="before")
    @classmethod
    def _description_text(cls, value: Any) -> str:
        return _optional_text(value) or ""

    @field_validator("sub_entity_identifier", "notes", mode="before")
    @classmethod
    def _optional_fields(cls, value: Any) -> Optional[str]:
        return _optional_text(value)

    @field_validator("secondary_identifiers", "symptoms", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _clean_str_list(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> int:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 50
        if math.isnan(number):
            return 50
        if not math.isfinite(number):
            return 100 if number > 0 else 0
        # Some models answer on a 0-1 scale
        if isinstance(value, float) and 0 < number < 1:
            number *= 100
        return int(max(0.0, min(100.0, round(number))))

    @model_validator(mode="after")
    def _drop_primary_from_secondary(self) -> "ExtractedDataBase":
        primary = fold_text(self.primary_identifier)
        self.secondary_identifiers = [
            s for s in self.secondary_identifiers if fold_text(s) != primary
        ]
        return self

    # -- Priority signals (overridden per kind) --

    @property
    def caused_interruption(self) -> bool:
        return False

    @property
    def is_recurring(self) -> bool:
        return False

    @property
    def needed_by(self) -> Optional[date]:
        return None


class FailureExtraction(ExtractedDataBase):
    """Equipment failure report."""

    kind: Literal["failure"] = "failure"
    category: FailureCategory = FailureCategory.OTHER
    caused_downtime: bool = False
    is_intermittent: bool = False
    was_resolved: bool = False
    solution_description: Optional[str] = None
    needs_work_order: bool = False
    suggested_assignee: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> FailureCategory:
        return _normalize_enum(value, FailureCategory, FailureCategory.OTHER)

    @field_validator("caused_downtime", "is_intermittent", "was_resolved", "needs_work_order", mode="before")
    @classmethod
    def _flags(cls, value: Any) -> bool:
        return coerce_bool(value)

    @field_validator("solution_description", "suggested_assignee", mode="before")
    @classmethod
    def _optional_failure_text(cls, value: Any) -> Optional[str]:
        return _optional_text(value)

    @property
    def caused_interruption(self) -> bool:
        return self.caused_downtime

    @property
    def is_recurring(self) -> bool:
        return self.is_intermittent


class PurchaseItem(BaseModel):
    description: str = Field(min_length=1)
    quantity: float = Field(default=1, gt=0)
    unit: str = "UN"

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 1
        return number if number > 0 else 1

    @field_validator("unit", mode="before")
    @classmethod
    def _unit(cls, value: Any) -> str:
        text = _optional_text(value)
        return text.upper() if text else "UN"


class PurchaseExtraction(ExtractedDataBase):
    """Purchase request; the primary identifier is the asset it is for."""

    kind: Literal["purchase"] = "purchase"
    category: PurchaseCategory = PurchaseCategory.OTHER
    items: list[PurchaseItem] = Field(default_factory=list)
    requested_by_date: Optional[date] = None
    stated_urgency: StatedUrgency = StatedUrgency.NORMAL
    blocks_operation: bool = False

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> PurchaseCategory:
        return _normalize_enum(value, PurchaseCategory, PurchaseCategory.OTHER)

    @field_validator("stated_urgency", mode="before")
    @classmethod
    def _urgency(cls, value: Any) -> StatedUrgency:
        return _normalize_enum(value, StatedUrgency, StatedUrgency.NORMAL)

    @field_validator("blocks_operation", mode="before")
    @classmethod
    def _blocks(cls, value: Any) -> bool:
        return coerce_bool(value)

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        # Drop items the model left without a description
        return [
            item for item in value
            if isinstance(item, dict) and _optional_text(item.get("description"))
        ]

    @field_validator("requested_by_date", mode="before")
    @classmethod
    def _date(cls, value: Any) -> Any:
        if value in (None, "", "null"):
            return None
        if isinstance(value, (date, str)):
            try:
                return date.fromisoformat(str(value)[:10])
            except ValueError:
                return None
        return None

    @property
    def caused_interruption(self) -> bool:
        return self.blocks_operation or self.stated_urgency == StatedUrgency.URGENT

    @property
    def needed_by(self) -> Optional[date]:
        return self.requested_by_date


ExtractedData = Annotated[
    Union[FailureExtraction, PurchaseExtraction],
    Field(discriminator="kind"),
]

_extracted_adapter: TypeAdapter[ExtractedData] = TypeAdapter(ExtractedData)


def load_extracted_data(blob: dict[str, Any]) -> ExtractedData:
    """Validate a stored extraction blob back into its typed variant."""
    return _extracted_adapter.validate_python(blob)
