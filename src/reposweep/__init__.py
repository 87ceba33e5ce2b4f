"""Repository maintenance: scan, plan, validate, and reversibly clean a source tree."""

__version__ = "0.1.0"
