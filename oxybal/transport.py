from dataclasses import dataclass, replace
from typing import List, Protocol, Sequence

import numpy as np

from oxybal.boundary import BoundaryClass, BoundaryNode
from oxybal.errors import ConfigError


@dataclass(frozen=True)
class InflowConcentrations:
    """O2 content imposed on inflowing boundary segments, per vessel type."""
    arteriole: float
    venule: float
    capillary: float

    def for_class(self, bctype: BoundaryClass) -> float:
        if bctype is BoundaryClass.INFLOW_ARTERIOLE:
            return self.arteriole
        if bctype is BoundaryClass.INFLOW_VENULE:
            return self.venule
        if bctype is BoundaryClass.INFLOW_CAPILLARY:
            return self.capillary
        raise ValueError(f"{bctype.name} is not an inflow boundary class")


@dataclass
class SolverOutput:
    """Per-segment results of one transport solve."""
    flow: np.ndarray   # Segment flow (qq)
    flux: np.ndarray   # Segment O2 flux in solver units (segc)


class TransportSolver(Protocol):
    """
    Network flow/diffusion solver driven by the gas balance loop.
    boundary_nodes() is read once; solve() is called every iteration.
    """

    def boundary_nodes(self) -> List[BoundaryNode]:
        ...

    def solve(self, inflow: InflowConcentrations) -> SolverOutput:
        ...


class MixedNetworkSolver:
    """
    Lumped stand-in for the network solver: all inflowing blood mixes,
    tissue removes `consumption` (O2 per unit time), and every outflow
    segment leaves at the mixed concentration.

    Segment flux is reported as flow * conc * flow_factor, matching the
    units of the full solver's segment flux.
    """

    def __init__(self, nodes: Sequence[BoundaryNode], node_flow: Sequence[float],
                 consumption: float = 0.0, flow_factor: float = 1.e6 / 60.):
        if len(nodes) != len(node_flow):
            raise ConfigError("node_flow must have one entry per boundary node")
        self.nodes = [replace(bc, bctype=BoundaryClass.from_code(bc.bctype, bc.node)) for bc in nodes]
        self.consumption = consumption
        self.flow_factor = flow_factor

        n_seg = max((bc.segment for bc in self.nodes), default=-1) + 1
        self.flow = np.zeros(n_seg)
        for bc, q in zip(self.nodes, node_flow):
            self.flow[bc.segment] = abs(q)

        self.q_out = sum(self.flow[bc.segment] for bc in self.nodes if not bc.bctype.is_inflow)
        if self.q_out <= 0.0:
            raise ConfigError("Network needs at least one outflow segment with positive flow")

    def boundary_nodes(self) -> List[BoundaryNode]:
        return list(self.nodes)

    def mixed_concentration(self, inflow: InflowConcentrations) -> float:
        o2_in = sum(self.flow[bc.segment] * inflow.for_class(bc.bctype)
                    for bc in self.nodes if bc.bctype.is_inflow)
        return (o2_in - self.consumption) / self.q_out

    def solve(self, inflow: InflowConcentrations) -> SolverOutput:
        c_mix = self.mixed_concentration(inflow)
        flux = np.zeros_like(self.flow)
        for bc in self.nodes:
            conc = inflow.for_class(bc.bctype) if bc.bctype.is_inflow else c_mix
            flux[bc.segment] = self.flow[bc.segment] * conc * self.flow_factor
        return SolverOutput(flow=self.flow.copy(), flux=flux)
