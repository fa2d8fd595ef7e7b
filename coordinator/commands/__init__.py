"""Command implementations for the `coord` CLI.

Each cmd_* function takes the parsed args and an Orchestrator and returns
an exit code. Domain errors propagate to cli.main(), which maps them to
exit codes.
"""
