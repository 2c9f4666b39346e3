"""
CrashLens package
=================

This package contains CrashLens, an offline filtering and aggregation
engine over the South Australian road crash tables.

- The CLI entry point is in `crashlens/cli.py`.
- The core engine (predicates, session, undo/redo) is in `crashlens/engine.py`.
- Dataset loading is in `crashlens/loader.py`; linking in `crashlens/indices.py`.
- Map layer shapes are in `crashlens/projections.py`.
"""

__version__ = '0.3.0'
