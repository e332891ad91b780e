from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .contest import Contest, Participant  # noqa: F401
from .prize import PrizeTier, Prize  # noqa: F401
from .audit import AuditLogEntry  # noqa: F401

__all__ = [
    "Base",
    "Contest",
    "Participant",
    "PrizeTier",
    "Prize",
    "AuditLogEntry",
]
