"""CLI command groups.

Command Groups:
- pipeline: Environment resolution, change detection, gates and full runs
- approvals: Approval gate inspection and decisions
- slots: Slot status, manual rollback, standby retirement and audit trail
"""

from .approvals import approvals_app
from .pipeline import pipeline_app
from .slots import slots_app

__all__ = [
    "approvals_app",
    "pipeline_app",
    "slots_app",
]
