"""
CLI tool to push a recording through the voice pipeline.

Usage:
    python scripts/submit_voice.py <audio_file> --catalog equipment.json --user u1 --org o1
    python scripts/submit_voice.py --resolve <log_id> --candidate 42 --user u1

Examples:
    # Report a failure from a voice note
    python scripts/submit_voice.py note.webm --catalog plant.json --user tech-7 --org acme

    # Report a purchase request
    python scripts/submit_voice.py order.m4a --kind purchase --catalog plant.json --user mgr-2 --org acme

    # Pick the equipment for a report that needed clarification
    python scripts/submit_voice.py --resolve 5b0c... --candidate 42 --user tech-7
"""

import argparse
import asyncio
import json
import mimetypes
import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dotenv import load_dotenv
load_dotenv(".env.local")

from pydantic import TypeAdapter

from voice_intake.logging_config import setup_logging, get_logger
from voice_intake.schemas.catalog import EntityCandidate
from voice_intake.schemas.extraction import RecordKind
from voice_intake.services.pipeline import build_pipeline

setup_logging()
logger = get_logger(__name__)

EXTRA_MIME_TYPES = {".webm": "audio/webm", ".m4a": "audio/m4a", ".ogg": "audio/ogg"}


def guess_mime_type(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    if ext in EXTRA_MIME_TYPES:
        return EXTRA_MIME_TYPES[ext]
    return mimetypes.guess_type(path)[0] or "application/octet-stream"


def load_catalog(path: str) -> list[EntityCandidate]:
    with open(path, encoding="utf-8") as f:
        return TypeAdapter(list[EntityCandidate]).validate_python(json.load(f))


async def submit(audio_path: str, catalog_path: str, user_id: str, org_id: str, kind: RecordKind) -> None:
    pipeline = build_pipeline()
    with open(audio_path, "rb") as f:
        audio = f.read()

    result = await pipeline.submit(
        audio=audio,
        mime_type=guess_mime_type(audio_path),
        user_id=user_id,
        organization_id=org_id,
        catalog=load_catalog(catalog_path),
        kind=kind,
    )
    print(result.model_dump_json(indent=2))

    if result.status == "needs_clarification":
        print(f"\nResolve with: --resolve {result.log_id} --candidate <id> --user {user_id}")


async def resolve(log_id: str, candidate_id: int, user_id: str) -> None:
    pipeline = build_pipeline()
    result = await pipeline.resolve_clarification(log_id, candidate_id, user_id)
    print(result.model_dump_json(indent=2))


def main() -> None:
    parser = argparse.ArgumentParser(description="Submit a voice report or resolve a paused one")
    parser.add_argument("audio_file", nargs="?", help="Path to the recording")
    parser.add_argument("--catalog", help="JSON file with the equipment candidates")
    parser.add_argument("--kind", choices=[k.value for k in RecordKind], default=RecordKind.FAILURE.value)
    parser.add_argument("--user", required=True, help="Reporting user id")
    parser.add_argument("--org", help="Organization id")
    parser.add_argument("--resolve", metavar="LOG_ID", help="Resume a log waiting for clarification")
    parser.add_argument("--candidate", type=int, help="Chosen candidate id (with --resolve)")

    args = parser.parse_args()

    if args.resolve:
        if args.candidate is None:
            parser.error("--resolve needs --candidate")
        asyncio.run(resolve(args.resolve, args.candidate, args.user))
        return

    if not args.audio_file or not args.catalog or not args.org:
        parser.error("Provide audio_file, --catalog and --org")

    asyncio.run(submit(args.audio_file, args.catalog, args.user, args.org, RecordKind(args.kind)))


if __name__ == "__main__":
    main()
