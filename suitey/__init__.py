"""
Parallel test-suite orchestration for Docker.

Suites are described as ``key=value`` records, admitted against a CPU-core
budget, launched in detached containers and summarised in a single
execution report.
"""

__version__ = "0.1.0"

from .scheduler import ExecutionCoordinator, launch_test_suites_parallel

__all__ = ["ExecutionCoordinator", "launch_test_suites_parallel", "__version__"]
