"""Infrastructure layer for files app.

This package contains integrations with the local system:
- MIME type detection (libmagic, file signatures, extension table)
- Filename normalization and sanitization
- Directory tree operations and archive extraction
- Staged upload handling

Keep infrastructure concerns separate from business logic.
"""
