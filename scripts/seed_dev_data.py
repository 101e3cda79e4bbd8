#!/usr/bin/env python3
"""Seed development data for testing.

Run with: uv run python scripts/seed_dev_data.py [--demo] [--clear]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.config import get_settings
from src.core.logging import configure_logging
from src.rag.orchestrator import build_orchestrator
from src.rag.setup import RAGSetupUtility


async def seed_dev_data(run_demo: bool = False, clear: bool = False) -> int:
    """Seed sample documents, validate the setup and optionally run the demo."""
    settings = get_settings()
    configure_logging(settings)

    orchestrator = build_orchestrator(settings)
    await orchestrator.initialize()
    setup = RAGSetupUtility(orchestrator)

    try:
        if clear:
            removed = await setup.clear_sample_data()
            print(f"✓ Removed {removed} sample chunks")
            return 0

        result = await setup.seed_sample_data()
        print(f"✓ Seeded {result.successful}/{result.total} sample documents")
        for failed in (r for r in result.results if not r.success):
            print(f"  ✗ {failed.document_id}: {failed.error_kind}: {failed.error}")

        validation = await setup.validate_setup()
        print("✓ Setup valid" if validation.is_valid else "✗ Setup has issues")
        for issue in validation.issues:
            print(f"  - {issue}")
        for tip in validation.recommendations:
            print(f"  * {tip}")

        if run_demo:
            for run in await setup.run_demo():
                print(f"\n? {run.query} ({run.domain})")
                if run.error:
                    print(f"  ✗ {run.error}")
                else:
                    print(f"  confidence={run.result.confidence:.2f} sources={len(run.result.sources)}")
                    print(f"  {run.result.answer[:200]}")

        return 0 if validation.is_valid else 1
    finally:
        await orchestrator.shutdown()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--demo", action="store_true", help="run demo queries after seeding")
    parser.add_argument("--clear", action="store_true", help="remove the sample documents")
    args = parser.parse_args()
    sys.exit(asyncio.run(seed_dev_data(run_demo=args.demo, clear=args.clear)))
