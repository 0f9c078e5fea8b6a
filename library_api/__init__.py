"""Library Management API - Core Application Package

This package contains the core application modules including:
- REST endpoints (api.py)
- Service facade (library.py)
- CLI interface (main.py)
- Domain models (models.py) and request/response schemas (schemas.py)
- Database layer (database.py) and SQL repositories (repositories/)
- Business rules per entity (services/)
"""

__version__ = "1.0.0"
