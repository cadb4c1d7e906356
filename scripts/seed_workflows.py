#!/usr/bin/env python3
"""
Create the approval tables and seed pages and workflows from configuration.

Safe to re-run: pages are registered once, unchanged workflows are left
alone, and changed workflows are saved as new versions.

Usage:
    python3 scripts/seed_workflows.py
    python3 scripts/seed_workflows.py --config path/to/set.yaml
    DATABASE_URL=postgresql://... python3 scripts/seed_workflows.py --reset
"""

import argparse
import os
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Create approval tables and seed workflows from YAML.",
    )
    parser.add_argument("--config", type=Path, default=None, help="configuration YAML")
    parser.add_argument(
        "--reset", action="store_true", help="drop all tables before creating them",
    )
    args = parser.parse_args()

    from approval_config import get_active_config
    from approval_config.bridges import seed_workflows
    from approval_kernel.db.engine import (
        create_tables,
        drop_tables,
        init_engine_from_url,
        session_scope,
    )
    from approval_kernel.logging_config import configure_logging

    config = get_active_config(args.config)
    configure_logging(level=config.settings.log_level)

    db_url = os.environ.get("DATABASE_URL", config.settings.database_url)
    init_engine_from_url(
        db_url,
        pool_size=config.settings.pool_size,
        max_overflow=config.settings.max_overflow,
    )
    if args.reset:
        drop_tables()
    create_tables()

    with session_scope() as session:
        seeded = seed_workflows(session, config)

    print(f"Seeded {len(config.pages)} pages and {len(seeded)} workflows "
          f"(config {config.config_id} v{config.version}, {config.checksum[:12]})")
    for name, workflow_id in sorted(seeded.items()):
        print(f"  {name:<32} {workflow_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
