"""
Bill Cycle - Source Package

Expands recurring bills into dated occurrences, materializes them lazily
into storage when a month is requested, and supports "this occurrence"
vs "this and all future occurrences" edits without rewriting history.

DESIGN PRINCIPLES:
1. Generation is pure, persistence is separate
2. Storage uniqueness is the only concurrency control
3. Soft delete only - history is never destroyed
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Bill Cycle Team"
