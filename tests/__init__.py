"""Test package for the SuperMind multiplication trainer.

This package contains unit tests for question generation, timing, scoring
and storage, scripted headless runs of the session state machines, and
pygame smoke tests.  The UI tests run headlessly using pygame's dummy video
driver to avoid opening real windows.  To run these tests, execute
``pytest`` from the project root.
"""
