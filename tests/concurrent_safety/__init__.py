"""
Concurrent safety tests for ptxbuild.

This package contains tests that verify builds sharing one crate manifest
never see each other's invocation name. Tests cover:
1. Parallel builds from threads of one process
2. Parallel builds from separate processes
3. Lock file blocking across processes

Test markers:
- concurrent: All concurrent safety tests
"""
