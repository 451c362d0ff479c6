"""
Mapper Test Suite

Structure:
- unit/: Unit tests for individual components
- integration/: End-to-end pipeline and CLI runs on synthetic flights
- conftest.py: nadir camera rig and textured-ground renderer fixtures
"""
