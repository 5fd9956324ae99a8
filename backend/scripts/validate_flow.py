#!/usr/bin/env python3
"""
Validates a JSON flow definition before it is deployed.

Checks node references, the required error_exit node, escalation targets and
that every action function is registered.

Usage:
    python scripts/validate_flow.py path/to/flow.json [--skip-actions]
"""

import sys
from pathlib import Path

# Add parent directory to path to import chatflow modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from chatflow.utils.logging import setup_logging  # noqa: E402
from chatflow.workflows.validator import main  # noqa: E402


if __name__ == "__main__":
    setup_logging()
    sys.exit(main())
