"""
Scenario-level helpers: the per-test harness and the reusable scenarios.
"""

from kurento_testkit.testing.fixture import HarnessFixture, compare

__all__ = ["HarnessFixture", "compare"]
