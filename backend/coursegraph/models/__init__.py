"""SQLAlchemy models package.

All ORM classes are registered deterministically so mapper configuration
(foreign-key resolution across tables) cannot depend on import order.
"""

# Import all model modules to register mapped classes in SQLAlchemy's registry.

from coursegraph.models import (  # noqa: F401
    assessment,
    content,
    enrollment,
)
