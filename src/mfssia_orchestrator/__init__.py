"""
mfssia-orchestrator — package root

File: src/mfssia_orchestrator/__init__.py

Purpose
- Client-side orchestrator for the MFSSIA multi-factor attestation oracle.
- Drives a DID through registration, challenge-instance creation, evidence
  submission and bounded attestation polling.

Import boundary
- Importing the package has no side effects (no config loading, no logging
  init, no network clients). Submodules are imported explicitly by callers.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
