"""
Data Extraction Service.

Turns a voice-note transcript into a typed extraction using an LLM in
JSON mode. The equipment catalog is rendered into the prompt so the
model answers with names that actually exist. One generic extractor
serves every record kind; each kind contributes its prompt pair and
its schema.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

from pydantic import ValidationError

from voice_intake.config import Settings, get_settings
from voice_intake.errors import ExtractionIncompleteError, ExtractionParseError
from voice_intake.logging_config import get_logger
from voice_intake.schemas.catalog import EntityCandidate
from voice_intake.schemas.extraction import (
    ExtractedData,
    ExtractedDataBase,
    FailureExtraction,
    PurchaseExtraction,
    RecordKind,
)
from voice_intake.services.llm_client import LanguageModel

logger = get_logger(__name__)

MANDATORY_FIELDS = ("primary_identifier", "title")

# Older prompt revisions answered in camelCase; accept both.
FIELD_ALIASES: dict[str, str] = {
    "machineIdentifier": "primary_identifier",
    "machine_identifier": "primary_identifier",
    "primaryIdentifier": "primary_identifier",
    "additionalMachineIdentifiers": "secondary_identifiers",
    "secondaryIdentifiers": "secondary_identifiers",
    "failureCategory": "category",
    "causedDowntime": "caused_downtime",
    "isIntermittent": "is_intermittent",
    "component": "sub_entity_identifier",
    "wasResolved": "was_resolved",
    "solutionDescription": "solution_description",
    "needsWorkOrder": "needs_work_order",
    "suggestedAssignee": "suggested_assignee",
    "neededBy": "requested_by_date",
    "needed_by": "requested_by_date",
    "statedUrgency": "stated_urgency",
    "blocksOperation": "blocks_operation",
}


FAILURE_SYSTEM_PROMPT = """You extract structured industrial failure reports from voice-note transcripts.

CONTEXT: Operators and technicians report machine failures by voice. The transcript language is "{language}". Keep equipment names exactly as they appear in the list below, in that language.

AVAILABLE EQUIPMENT:
{catalog}

EXTRACTION RULES:

1. EQUIPMENT (critical, be precise):
   - Prefer EXACT names, nicknames or aliases from the list above.
   - Include the area/sector in primary_identifier if the speaker mentions it.
   - A failure may affect several machines ("the crane hit the press"): primary_identifier is the first or main one, secondary_identifiers lists the others.
   - If you cannot identify the machine with certainty, put everything the speaker said about it in primary_identifier.

2. TITLE: concise summary of the problem, at most 100 characters.

3. CATEGORY: MECHANICAL (noise, vibration, wear, breakage, jams), ELECTRICAL (shorts, motors, sensors, PLCs, wiring), HYDRAULIC (oil leaks, pressure, cylinders, hydraulic pumps), PNEUMATIC (air leaks, valves, compressors), OTHER.

4. caused_downtime: true if production stopped ("it stopped", "it's down", "we had to stop").

5. is_intermittent: true if it happens "sometimes", "on and off", "only when...".

6. symptoms: every symptom mentioned ("metallic noise", "burning smell", "dripping").

7. sub_entity_identifier: the most specific component mentioned ("motor bearing", "temperature sensor"), or null.

8. confidence (0-100): 90-100 clear and complete, 70-89 minor details missing, 50-69 some ambiguity, 0-49 confusing or very incomplete.

9. was_resolved / solution_description: whether the speaker says they already fixed it, and how.

10. needs_work_order / suggested_assignee: whether they ask for someone to come, and who."""

FAILURE_USER_PROMPT = """REPORT TRANSCRIPT:
"{transcript}"

REPORTED ON: {today}

Answer ONLY with valid JSON (no markdown, no comments):
{
  "primary_identifier": "string - main affected machine",
  "secondary_identifiers": ["string"],
  "title": "string - max 100 chars",
  "description": "string - detailed description of the problem",
  "category": "MECHANICAL" | "ELECTRICAL" | "HYDRAULIC" | "PNEUMATIC" | "OTHER",
  "caused_downtime": boolean,
  "is_intermittent": boolean,
  "symptoms": ["string"],
  "sub_entity_identifier": "string | null",
  "confidence": number,
  "notes": "string | null",
  "was_resolved": boolean,
  "solution_description": "string | null",
  "needs_work_order": boolean,
  "suggested_assignee": "string | null"
}"""

PURCHASE_SYSTEM_PROMPT = """You extract purchase requests from voice-note transcripts dictated by plant managers.

CONTEXT: The transcript language is "{language}". Each request is for a specific machine or area listed below; keep names exactly as listed.

AVAILABLE EQUIPMENT AND AREAS:
{catalog}

EXTRACTION RULES:

1. primary_identifier: the machine or area the purchase is for. secondary_identifiers: other machines that will use it.
2. items: every item with description, quantity and unit ("10 bags of cement" -> {"description": "Cement", "quantity": 10, "unit": "BAG"}). Unclear quantity -> 1. Common units: UN, KG, L, M, M2, M3, BAG, BOX, ROLL, PACK.
3. category: SPARE_PARTS, CONSUMABLES, TOOLS, SERVICES or OTHER.
4. stated_urgency: URGENT ("urgent", "for yesterday", "machine is stopped", "emergency"), HIGH ("important", "as soon as possible"), LOW ("when you can", "for stock"), otherwise NORMAL.
5. requested_by_date: resolve relative dates ("on Monday", "this week" = Friday) against today's date, format YYYY-MM-DD, or null.
6. blocks_operation: true if a machine or line cannot run until the purchase arrives.
7. title: short summary, at most 100 characters ("Spare parts for CNC").
8. confidence (0-100) as for any extraction: how clear and complete the request was."""

PURCHASE_USER_PROMPT = """REQUEST TRANSCRIPT:
"{transcript}"

TODAY: {today}

Answer ONLY with valid JSON (no markdown, no comments):
{
  "primary_identifier": "string",
  "secondary_identifiers": ["string"],
  "title": "string",
  "description": "string",
  "category": "SPARE_PARTS" | "CONSUMABLES" | "TOOLS" | "SERVICES" | "OTHER",
  "items": [{"description": "string", "quantity": number, "unit": "string"}],
  "requested_by_date": "YYYY-MM-DD" | null,
  "stated_urgency": "LOW" | "NORMAL" | "HIGH" | "URGENT",
  "blocks_operation": boolean,
  "symptoms": [],
  "sub_entity_identifier": null,
  "confidence": number,
  "notes": "string | null"
}"""


@dataclass(frozen=True)
class ExtractionProfile:
    """Prompt pair and schema for one record kind."""
    kind: RecordKind
    system_prompt: str
    user_prompt: str
    schema: type[ExtractedDataBase]


PROFILES: dict[RecordKind, ExtractionProfile] = {
    RecordKind.FAILURE: ExtractionProfile(
        kind=RecordKind.FAILURE,
        system_prompt=FAILURE_SYSTEM_PROMPT,
        user_prompt=FAILURE_USER_PROMPT,
        schema=FailureExtraction,
    ),
    RecordKind.PURCHASE: ExtractionProfile(
        kind=RecordKind.PURCHASE,
        system_prompt=PURCHASE_SYSTEM_PROMPT,
        user_prompt=PURCHASE_USER_PROMPT,
        schema=PurchaseExtraction,
    ),
}


def format_catalog(candidates: list[EntityCandidate]) -> str:
    """Render the catalog one candidate per line for the prompt."""
    if not candidates:
        return "No equipment available"

    lines = []
    for c in candidates:
        parts = [f'"{c.name}"']
        if c.nickname:
            parts.append(f'nickname: "{c.nickname}"')
        if c.aliases:
            parts.append("also known as: " + ", ".join(f'"{a}"' for a in c.aliases))
        if c.parent_name:
            parts.append(f'area: "{c.parent_name}"')
        lines.append(f"- {', '.join(parts)}")
    return "\n".join(lines)


_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_model_json(content: str) -> dict[str, Any]:
    """Parse the model answer; tolerate a markdown code fence around it."""
    text = _CODE_FENCE.sub("", (content or "").strip())
    if not text:
        raise ExtractionParseError("Empty model response")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ExtractionParseError(f"Malformed JSON from model: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise ExtractionParseError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def apply_field_aliases(raw: dict[str, Any]) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for key, value in raw.items():
        target = FIELD_ALIASES.get(key, key)
        # Canonical key wins over an alias when both are present
        if target in data and key != target:
            continue
        data[target] = value
    return data


def missing_mandatory_fields(data: dict[str, Any]) -> list[str]:
    missing = []
    for name in MANDATORY_FIELDS:
        value = data.get(name)
        if value is None or isinstance(value, (dict, list)) or not str(value).strip():
            missing.append(name)
    return missing


class StructuredExtractor:
    """
    Coerces a transcript into a typed extraction.

    Raises ``ExtractionParseError`` for unusable JSON and
    ``ExtractionIncompleteError`` when the equipment or title is missing.
    Any other gap is filled with a safe default; weak answers flow on as
    low confidence.
    """

    def __init__(
        self,
        model: LanguageModel,
        settings: Settings | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._model = model
        self._settings = settings or get_settings()
        self._today = today

    def build_prompts(
        self,
        kind: RecordKind,
        transcript: str,
        catalog: list[EntityCandidate],
    ) -> tuple[str, str]:
        profile = PROFILES[kind]
        system_prompt = (
            profile.system_prompt
            .replace("{catalog}", format_catalog(catalog))
            .replace("{language}", self._settings.voice_language)
        )
        user_prompt = (
            profile.user_prompt
            .replace("{transcript}", transcript)
            .replace("{today}", self._today().isoformat())
        )
        return system_prompt, user_prompt

    async def extract(
        self,
        transcript: str,
        catalog: list[EntityCandidate],
        kind: RecordKind = RecordKind.FAILURE,
    ) -> ExtractedData:
        logger.info("extraction_started", kind=kind.value, transcript_length=len(transcript))

        system_prompt, user_prompt = self.build_prompts(kind, transcript, catalog)
        content = await self._model.complete_json(
            system_prompt,
            user_prompt,
            temperature=self._settings.extraction_temperature,
            max_tokens=self._settings.extraction_max_tokens,
        )

        data = apply_field_aliases(parse_model_json(content))

        missing = missing_mandatory_fields(data)
        if missing:
            logger.warning("extraction_incomplete", kind=kind.value, missing=missing)
            raise ExtractionIncompleteError(missing)

        data["kind"] = kind.value
        data.pop("schema_version", None)
        try:
            extraction = PROFILES[kind].schema.model_validate(data)
        except ValidationError as e:
            logger.warning("extraction_schema_mismatch", kind=kind.value, errors=e.error_count())
            raise ExtractionParseError(f"Model answer does not match the {kind.value} schema") from e

        logger.info(
            "extraction_complete",
            kind=kind.value,
            primary_identifier=extraction.primary_identifier,
            secondary=len(extraction.secondary_identifiers),
            confidence=extraction.confidence,
        )
        return extraction
