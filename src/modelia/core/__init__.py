"""Core building blocks for Modelia Studio.

- **ModeliaConfig / config**: settings from ``MODELIA_*`` environment
  variables and ``.env`` via pydantic-settings
- **errors**: the tagged error variants the HTTP layer renders
- **CircuitBreaker**: per-operation failure isolation for persistence calls
- **database / db_models**: SQLAlchemy engine, sessions and the two tables
- **FileNamespace**: per-user secure file storage and authorization
- **backend_registry**: pluggable generation backends (simulated by default)
"""
