"""
Integration tests for Zapio build system.

These tests validate the complete end-to-end functionality of the build system,
including package downloads, compilation, linking, and firmware generation.
"""
