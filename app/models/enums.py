"""PostgreSQL-backed enum types for all ORM models.

Each StrEnum maps 1:1 to a PostgreSQL CREATE TYPE ... AS ENUM.
These are separate from the Pydantic StrEnum in app/config.py —
config enums validate settings, ORM enums type database columns.
"""

from enum import StrEnum

# ── Lifecycle enums ─────────────────────────────────────────────────────────


class StageCodeEnum(StrEnum):
    """Growth stages a tray moves through, in cultivation order."""

    soaking = "soaking"
    germination = "germination"
    blackout = "blackout"
    light = "light"
    harvested = "harvested"


class TransitionTypeEnum(StrEnum):
    """Kind of stage transition recorded in the audit trail."""

    advance = "advance"
    revert = "revert"
    bulk_advance = "bulk_advance"
    bulk_revert = "bulk_revert"
