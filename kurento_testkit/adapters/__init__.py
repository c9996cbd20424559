"""
Adapters binding the harness ports to concrete collaborators.

Each adapter module imports its third-party stack at module level; load them
through :mod:`kurento_testkit._optional` so a missing extra is reported with
the matching ``pip install`` hint.
"""
