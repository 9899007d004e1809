"""
Feature modules live under this package.

Each module owns its blueprint (`admin.py`), tables (`models.py`) and business
logic (`service.py`), and reuses platform primitives: auth, RBAC, audit,
notifications, DB session.
"""
