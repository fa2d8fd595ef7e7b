"""Shared constants for the coordinator."""

import re

# Task IDs are caller-chosen (T1, auth-login, ...); feature/PRD IDs are generated
TASK_ID_PATTERN = re.compile(r'^[A-Za-z][A-Za-z0-9_.-]*$')
MAX_TASK_ID_LEN = 64
FEATURE_ID_PREFIX = "FEAT"
PRD_ID_PREFIX = "PRD"

MAX_ACCEPTANCE_CRITERIA = 5

CHANGE_TYPES = ("feature", "fix", "refactor", "style", "docs")

# Reasons recorded on blocked tasks
REASON_TIMEOUT = "Timeout"
REASON_CANCELLED = "Cancelled"
REASON_CONFLICT = "ConflictDetected"
REASON_SNAPSHOT = "SnapshotWriteFailure"
REASON_WRITE = "ResourceWriteFailure"

# Command exit codes
EXIT_OK = 0
EXIT_CONFLICT = 1
EXIT_VALIDATION = 2
EXIT_INTEGRITY = 3
