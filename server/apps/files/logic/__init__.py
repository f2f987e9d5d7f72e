"""Business logic layer for files app.

This package contains all business logic for uploads:
- Upload restrictions and validation
- The upload pipeline (validate, quota check, persist, post-process)
- Persistent per-user quota bookkeeping

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).

Reference: https://github.com/dry-python
for decoupling business logic from Django views.
"""
