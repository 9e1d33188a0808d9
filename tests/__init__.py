"""
Test suite for caviarpd.

This package contains all tests organized by component:
- test_algorithms/: Tests for the sampler, batch engine, losses and calibration
- top level: configuration and the high-level estimator
"""
