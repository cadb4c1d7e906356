#!/usr/bin/env python3
"""
Run one pass of the approval timer sweep.

Applies due auto-approvals and escalations to pending requests and, unless
disabled in configuration, expires requests past their due date.

Usage:
    python3 scripts/run_sweep.py
    DATABASE_URL=postgresql://... python3 scripts/run_sweep.py --batch-size 500
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
    parser = argparse.ArgumentParser(description="Run the approval timer sweep once.")
    parser.add_argument("--config", type=Path, default=None, help="configuration YAML")
    parser.add_argument("--batch-size", type=int, default=None)
    args = parser.parse_args()

    from approval_config import get_active_config
    from approval_config.bridges import build_directory
    from approval_kernel.db.engine import get_session, init_engine_from_url
    from approval_kernel.logging_config import configure_logging
    from approval_services.escalation_sweep import EscalationSweep

    config = get_active_config(args.config)
    configure_logging(level=config.settings.log_level)
    init_engine_from_url(os.environ.get("DATABASE_URL", config.settings.database_url))

    session = get_session()
    try:
        report = EscalationSweep(
            session,
            build_directory(config),
            batch_size=args.batch_size or config.settings.sweep_batch_size,
            expire_overdue=config.settings.expire_overdue_requests,
            max_retries=config.settings.max_action_retries,
        ).run()
    finally:
        session.close()

    print(
        f"examined={report.examined} escalated={report.escalated} "
        f"auto_approved={report.auto_approved} expired={report.expired} "
        f"failed={report.failed}"
    )
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
