#!/usr/bin/env python3
"""
Admin command line for the approval workflow core.

Usage:
    python3 scripts/workflow_cli.py --database-url sqlite:///workflow.db init-db
    python3 scripts/workflow_cli.py worklist hod
    python3 scripts/workflow_cli.py transition <request_id> hod t-17 approve

Without --database-url the URL comes from DATABASE_URL or
workflow_config/sets/settings.yaml.  See workflow_services/cli.py for the
full command list.
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from workflow_services.cli import main

if __name__ == "__main__":
    sys.exit(main())
