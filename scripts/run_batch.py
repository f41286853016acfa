#!/usr/bin/env python3
"""
Batch Runner

Loads node metrics from a JSON file, runs a batch job over them and prints
the ranked opportunities.

The metrics file is either a list of node records or an object with a
"nodes" list. Each record needs a node id ("node_id", "nodeId" or "id");
missing counters default to 0 and a missing position to 20.

Usage:
    python scripts/run_batch.py metrics.json

    # With options:
    python scripts/run_batch.py metrics.json \
        --type scoring \
        --project my-shop \
        --batch-size 50 \
        --target-position 3 \
        --output results.json
"""

import asyncio
import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from src.models import NodeMetrics
from src.persistence import InMemoryMetricsRepository, JobTracker, JobType
from src.processing import BatchProcessor
from src.utils.config import get_settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


def load_nodes(path: Path, project_id: str):
    """Read node metrics records from a JSON file."""
    with open(path, "r") as f:
        data = json.load(f)

    records = data.get("nodes", []) if isinstance(data, dict) else data
    nodes = []
    for record in records:
        record = dict(record)
        record.setdefault("project_id", project_id)
        nodes.append(NodeMetrics.from_dict(record))
    return nodes


async def run_batch(
    metrics_path: Path,
    job_type: str = "full_analysis",
    project_id: str = "local",
    batch_size: int = None,
    target_position: int = None,
    top: int = 20,
    output_path: Path = None,
):
    """Run one job to completion and print its summary."""

    load_dotenv()
    settings = get_settings()
    logging.getLogger().setLevel(settings.LOG_LEVEL.upper())

    nodes = load_nodes(metrics_path, project_id)
    print(f"Loaded {len(nodes)} nodes from {metrics_path}")

    repository = InMemoryMetricsRepository({project_id: nodes})
    tracker = JobTracker(storage_path=settings.JOBS_PATH)
    processor = BatchProcessor(repository, tracker, settings=settings)

    options = {}
    if batch_size:
        options["batch_size"] = batch_size
    if target_position:
        options["target_position"] = target_position

    start_time = datetime.now()
    job = await processor.create_job(job_type, project_id, options)
    job = await processor.wait_for_job(job.id)
    duration = (datetime.now() - start_time).total_seconds()

    print("\n" + "=" * 70)
    print(f"JOB {job.id} - {job.status.value.upper()}")
    print("=" * 70)
    print(f"Processed: {job.processed_items}/{job.total_items}")
    print(f"Failed:    {job.failed_items}")
    print(f"Duration:  {duration:.2f} seconds")

    for error in job.errors[:10]:
        print(f"  ✗ {error.node_id or '-'}: {error.error_type}: {error.message}")

    ranked = (job.result or {}).get("ranked", [])[:top]
    if ranked:
        print(f"\nTop {len(ranked)} opportunities:")
        print(f"{'#':>3}  {'node':<32} {'value':>8} {'score':>6} {'category':<12} {'annual lift':>12} {'conf':>5}")
        for i, entry in enumerate(ranked, 1):
            score = entry["score"] if entry["score"] is not None else "-"
            category = entry.get("category") or "-"
            lift = entry["annual_revenue_lift"]
            lift_text = f"{lift:,.0f}" if lift is not None else "-"
            print(
                f"{i:>3}  {entry['node_id'][:32]:<32} {entry['combined_value']:>8.2f} "
                f"{score:>6} {category:<12} {lift_text:>12} {entry['confidence']:>5.2f}"
            )

    if output_path:
        with open(output_path, "w") as f:
            json.dump(job.to_dict(), f, indent=2)
        print(f"\n✓ Saved job to: {output_path}")

    await processor.shutdown()
    return job


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Score taxonomy nodes and project revenue from a JSON metrics file"
    )
    parser.add_argument(
        "metrics",
        type=Path,
        help="JSON file with node metrics"
    )
    parser.add_argument(
        "--type",
        default=JobType.FULL_ANALYSIS.value,
        choices=[t.value for t in JobType],
        help="Job type (default: full_analysis)"
    )
    parser.add_argument(
        "--project",
        default="local",
        help="Project id (default: local)"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Nodes per batch (default: BATCH_SIZE setting)"
    )
    parser.add_argument(
        "--target-position",
        type=int,
        default=None,
        help="Target rank for revenue projections (default: three ranks up)"
    )
    parser.add_argument(
        "--top",
        type=int,
        default=20,
        help="Number of ranked opportunities to print (default: 20)"
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the finished job as JSON"
    )

    args = parser.parse_args()

    job = asyncio.run(run_batch(
        metrics_path=args.metrics,
        job_type=args.type,
        project_id=args.project,
        batch_size=args.batch_size,
        target_position=args.target_position,
        top=args.top,
        output_path=args.output,
    ))

    sys.exit(0 if job.status.value == "completed" else 1)


if __name__ == "__main__":
    main()
