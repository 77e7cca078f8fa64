from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterable, Sequence

from oxybal.errors import DivisionByZeroError, UnclassifiedBoundaryNodeError


class BoundaryClass(IntEnum):
    """Boundary node types, numbered as the network solver's bctyp codes."""
    INFLOW_VENULE = 4
    INFLOW_ARTERIOLE = 5
    INFLOW_CAPILLARY = 6
    OUTFLOW_VENULE = 7
    OUTFLOW_ARTERIOLE = 8
    OUTFLOW_CAPILLARY = 9

    @property
    def is_inflow(self) -> bool:
        return self.value <= 6

    @property
    def label(self) -> str:
        return CLASS_LABELS[self]

    @classmethod
    def from_code(cls, code: int, node: int = 0) -> "BoundaryClass":
        try:
            return cls(int(code))
        except ValueError:
            raise UnclassifiedBoundaryNodeError(
                f"Boundary node {node} not classified (type {code})",
                {"node": node, "bctyp": code})


CLASS_LABELS = {
    BoundaryClass.INFLOW_VENULE: "In Ven",
    BoundaryClass.INFLOW_ARTERIOLE: "In Art",
    BoundaryClass.INFLOW_CAPILLARY: "In Cap",
    BoundaryClass.OUTFLOW_VENULE: "Out Ven",
    BoundaryClass.OUTFLOW_ARTERIOLE: "Out Art",
    BoundaryClass.OUTFLOW_CAPILLARY: "Out Cap",
}

# Outflow class whose concentration is fed back into each inflow class
FEEDBACK = {
    BoundaryClass.INFLOW_VENULE: BoundaryClass.OUTFLOW_VENULE,
    BoundaryClass.INFLOW_CAPILLARY: BoundaryClass.OUTFLOW_CAPILLARY,
}


@dataclass(frozen=True)
class BoundaryNode:
    node: int                 # Node name in the network
    segment: int              # Index of the segment touching the node
    bctype: BoundaryClass


@dataclass
class BoundaryAggregate:
    """
    Flow and flux summed per boundary class over one solver pass.
    """
    flow: Dict[BoundaryClass, float] = field(
        default_factory=lambda: {cls: 0.0 for cls in BoundaryClass})
    flux: Dict[BoundaryClass, float] = field(
        default_factory=lambda: {cls: 0.0 for cls in BoundaryClass})
    count: Dict[BoundaryClass, int] = field(
        default_factory=lambda: {cls: 0 for cls in BoundaryClass})

    def add(self, bctype: BoundaryClass, flow: float, flux: float):
        self.flow[bctype] += flow
        self.flux[bctype] += flux
        self.count[bctype] += 1

    def present(self, bctype: BoundaryClass) -> bool:
        return self.count[bctype] > 0

    def concentration(self, bctype: BoundaryClass) -> float:
        """Flow-weighted concentration of the class (flux / flow)."""
        flow = self.flow[bctype]
        if flow == 0.0:
            raise DivisionByZeroError(
                f"Zero accumulated flow for boundary class {bctype.label}",
                {"bctyp": int(bctype), "nodes": self.count[bctype], "flux": self.flux[bctype]})
        return self.flux[bctype] / flow

    @property
    def in_flux(self) -> float:
        return sum(v for cls, v in self.flux.items() if cls.is_inflow)

    @property
    def out_flux(self) -> float:
        return sum(v for cls, v in self.flux.items() if not cls.is_inflow)


def aggregate_boundaries(nodes: Iterable[BoundaryNode], segment_flow: Sequence[float],
                         segment_flux: Sequence[float], flux_factor: float = 1.0) -> BoundaryAggregate:
    """
    Sum solver flow and flux into the six boundary classes.
    Flux values are divided by `flux_factor` (the solver's unit conversion).
    """
    agg = BoundaryAggregate()
    for bc in nodes:
        # Nodes built from raw solver codes are checked here
        bctype = bc.bctype
        if not isinstance(bctype, BoundaryClass):
            bctype = BoundaryClass.from_code(bctype, bc.node)
        agg.add(bctype, float(segment_flow[bc.segment]),
                float(segment_flux[bc.segment]) / flux_factor)
    return agg
