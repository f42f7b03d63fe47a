"""
Shared module for the ambient concerns of the persistence pipeline.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (pydantic-settings)
  - logging.py: Structured logging

- shared.infrastructure: Store and transport plumbing
  - db.py: SQLAlchemy engine/session factory, safe_commit()
  - context.py: Acting user and correlation id context variables
  - redis_pool.py: Sync Redis connection pool for distributed events

- shared.utils: Utilities
  - exceptions.py: Typed pipeline errors with auto-logging

IMPORT EXAMPLES:
    from shared.config.settings import settings
    from shared.config.logging import get_logger
    from shared.infrastructure.db import get_db_context, safe_commit
    from shared.infrastructure.context import actor_context
    from shared.utils.exceptions import IntegrityPolicyViolation
"""
