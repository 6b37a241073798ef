"""Map association engine and the offline repair pass."""

from .engine import APPENDED, CREATED, MapAssociationEngine, MapChange, ReconcileResult
from .repair import MapRepairer, RepairReport

__all__ = [
    "APPENDED",
    "CREATED",
    "MapAssociationEngine",
    "MapChange",
    "MapRepairer",
    "ReconcileResult",
    "RepairReport",
]
