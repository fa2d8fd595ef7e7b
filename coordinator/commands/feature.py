"""
coord feature / coord prd - Create features and attach PRDs.
"""

import sys
from pathlib import Path

from coordinator.lib.constants import EXIT_OK, EXIT_VALIDATION
from coordinator.workflow.engine import Orchestrator


def cmd_feature(args, orch: Orchestrator) -> int:
    """Create a feature from a description and print its id."""
    description = " ".join(args.description)
    feature = orch.create_feature(description)
    print(feature.id)
    return EXIT_OK


def cmd_prd(args, orch: Orchestrator) -> int:
    """Attach a PRD artifact to an existing feature."""
    if args.file:
        path = Path(args.file)
        if not path.exists():
            print(f"ERROR: PRD file not found: {path}")
            return EXIT_VALIDATION
        content = path.read_text()
    elif args.text:
        content = args.text
    else:
        content = sys.stdin.read()

    if not content.strip():
        print("ERROR: PRD content is empty")
        return EXIT_VALIDATION

    prd_id = orch.attach_prd(args.feature_id, content)
    feature = orch.store.get_feature(args.feature_id)
    print(f"{prd_id} attached to {feature.id} (status: {feature.status})")
    return EXIT_OK
