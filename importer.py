"""Ingest hand-authored items (.jsonl): validate each one, map topic -> domain, bulk UPSERT into items."""
import argparse
import json
import logging
from pathlib import Path
from uuid import NAMESPACE_DNS, uuid5

from emt_trainer.errors import ScenarioValidationError
from emt_trainer.generator import map_topic_to_domain, normalize_tags
from emt_trainer.validator import validate_scenario

logger = logging.getLogger(__name__)


def parse_line(line: str, exam_eligible: bool = False) -> dict | None:
    """Parse and validate one JSONL line into an items row. Returns None if blank/invalid."""
    line = line.strip()
    if not line:
        return None
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as e:
        logger.warning("Skipping line (bad JSON): %s", e)
        return None
    topic = (raw.get("topic") or "").strip() if isinstance(raw, dict) else ""
    if not topic:
        logger.warning("Skipping item without topic")
        return None
    try:
        scenario = validate_scenario(raw)
    except ScenarioValidationError as e:
        logger.warning("Skipping item %s: %s", raw.get("id") or topic, e)
        return None

    domain = raw.get("domain") or map_topic_to_domain(topic)
    row = scenario.to_dict()
    row["id"] = str(raw.get("id") or uuid5(NAMESPACE_DNS, scenario.vignette + scenario.question))
    row["topic"] = topic
    row["domain"] = domain
    row["tags"] = normalize_tags(list(scenario.tags), domain, topic)
    row["is_exam_eligible"] = bool(raw.get("is_exam_eligible", exam_eligible))
    return row


def load_and_transform(path: Path, exam_eligible: bool = False):
    """Read JSONL and yield validated item rows."""
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            row = parse_line(line, exam_eligible=exam_eligible)
            if row:
                yield row


def run_import(jsonl_path: Path, chunk_size: int = 200, dry_run: bool = False, exam_eligible: bool = False):
    if not jsonl_path.exists():
        raise FileNotFoundError(f"JSONL not found: {jsonl_path}")
    rows = list(load_and_transform(jsonl_path, exam_eligible=exam_eligible))
    if dry_run:
        print(f"Dry run: would upsert {len(rows)} items from {jsonl_path}")
        if rows:
            print("Sample row:", rows[0])
        return len(rows)

    from db import get_database_uncached

    total = get_database_uncached().upsert_items(rows, chunk_size=chunk_size)
    print(f"Upserted {total} items from {jsonl_path}")
    return total


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    parser = argparse.ArgumentParser(description="Import hand-authored EMT items (JSONL) into Supabase.")
    parser.add_argument("jsonl", help="Path to .jsonl, one scenario object per line")
    parser.add_argument("--chunk-size", type=int, default=200, help="Upsert chunk size (default 200)")
    parser.add_argument("--dry-run", action="store_true", help="Validate only, do not upsert")
    parser.add_argument("--exam-eligible", action="store_true", help="Flag items without an explicit is_exam_eligible as exam-eligible")
    args = parser.parse_args()
    run_import(Path(args.jsonl), chunk_size=args.chunk_size, dry_run=args.dry_run, exam_eligible=args.exam_eligible)
