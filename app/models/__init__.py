"""ORM model registry — importing this module registers every table on Base.metadata.

Alembic ``env.py`` imports ``Base`` from here (not from ``base.py``) so that
autogenerate sees all tables.  Application code can also do::

    from app.models import Crop, CropStage, TaskSchedule, ...
"""

# ── Base & Mixins ───────────────────────────────────────────────────────────
from app.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# ── Crop lifecycle models ───────────────────────────────────────────────────
from app.models.crops import Crop, CropBatch, CropStage, Harvest, Recipe

# ── Enums ───────────────────────────────────────────────────────────────────
from app.models.enums import StageCodeEnum, TransitionTypeEnum

# ── Scheduling & audit ──────────────────────────────────────────────────────
from app.models.tasks import TaskSchedule
from app.models.transitions import StageTransitionRecord

__all__ = [
    # Base & mixins
    "Base",
    # Crop lifecycle
    "Crop",
    "CropBatch",
    "CropStage",
    "Harvest",
    "Recipe",
    # Enums
    "StageCodeEnum",
    # Audit
    "StageTransitionRecord",
    # Scheduling
    "TaskSchedule",
    "TimestampMixin",
    "TransitionTypeEnum",
    "UUIDPrimaryKeyMixin",
]
