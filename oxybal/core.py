from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol

import structlog

from oxybal.boundary import FEEDBACK, BoundaryAggregate, BoundaryClass, aggregate_boundaries
from oxybal.errors import ConfigError
from oxybal.numerics import ROOT_MAX_ITER, ROOT_TOLERANCE
from oxybal.physiology import BloodGasParams, GasState, blood_conc, inverse_blood_conc
from oxybal.transport import InflowConcentrations, TransportSolver

logger = structlog.get_logger()

FLOWFAC = 1.e6 / 60.   # Solver segment flux units -> flux units of the balance


def sim_volume(vol: float, nnt: int) -> float:
    """Volume of the simulation region (cm^3) from tissue point volume (um^3) and count."""
    return vol * nnt / 1e6


@dataclass
class InflowPressures:
    """Initial PO2 (mmHg) of blood entering through each vessel type."""
    arteriole: float = 100.0
    venule: float = 40.0
    capillary: float = 40.0


@dataclass
class BalanceConfig:
    """
    Settings for one gas balance run. Read once before the loop starts.
    """
    blood: BloodGasParams = field(default_factory=BloodGasParams)
    hematocrit: float = 0.4           # Discharge hematocrit of inflowing blood (HDin0)
    inflow_po2: InflowPressures = field(default_factory=InflowPressures)
    volume: float = 1.0               # Simulation region volume (cm^3)
    tolerance: float = 1e-3           # Max inflow/outflow concentration mismatch
    max_iterations: int = 100
    flow_factor: float = FLOWFAC
    root_tolerance: float = ROOT_TOLERANCE
    root_max_iter: int = ROOT_MAX_ITER

    def __post_init__(self):
        for name, kind in (("hematocrit", float), ("volume", float), ("tolerance", float),
                           ("max_iterations", int), ("flow_factor", float),
                           ("root_tolerance", float), ("root_max_iter", int)):
            value = getattr(self, name)
            try:
                setattr(self, name, kind(value))
            except (TypeError, ValueError):
                raise ConfigError(f"{name} must be a number, got {value!r}", {name: value})
        if self.max_iterations < 1:
            raise ConfigError("max_iterations must be at least 1", {"max_iterations": self.max_iterations})
        if self.root_max_iter < 1:
            raise ConfigError("root_max_iter must be at least 1", {"root_max_iter": self.root_max_iter})
        if self.volume <= 0.0:
            raise ConfigError("Simulation volume must be positive", {"volume": self.volume})
        if self.tolerance < 0.0 or self.root_tolerance <= 0.0:
            raise ConfigError("Tolerances must be positive",
                              {"tolerance": self.tolerance, "root_tolerance": self.root_tolerance})
        if not 0.0 <= self.hematocrit < 1.0:
            raise ConfigError("Hematocrit must be in [0, 1)", {"hematocrit": self.hematocrit})

    def with_overrides(self, **overrides) -> "BalanceConfig":
        """
        Copy with fields replaced. Nested fields use dotted keys,
        e.g. "blood.p50" or "inflow_po2.arteriole".
        """
        top = {}
        blood = {}
        po2 = {}
        top_names = {f.name for f in fields(self)}
        po2_names = {f.name for f in fields(InflowPressures)}
        for key, value in overrides.items():
            section, _, name = key.rpartition(".")
            if section == "blood" and name in ("fn", "p50", "alphab", "cs", "plow", "phigh"):
                blood[name] = _number(key, value)
            elif section == "inflow_po2" and name in po2_names:
                po2[name] = _number(key, value)
            elif section == "" and name in top_names - {"blood", "inflow_po2"}:
                top[name] = value
            else:
                raise ConfigError(f"Unknown configuration key: {key}", {"key": key})
        if blood:
            top["blood"] = self.blood.updated(**blood)
        if po2:
            top["inflow_po2"] = replace(self.inflow_po2, **po2)
        return replace(self, **top)


def _number(key: str, value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {value!r}", {key: value})


class LoopStatus(Enum):
    RUNNING = "running"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"


@dataclass
class IterationRecord:
    """Everything computed in one pass of the balance loop."""
    case: int
    iteration: int
    aggregate: BoundaryAggregate
    conc: Dict[BoundaryClass, Optional[float]]
    states: Dict[BoundaryClass, Optional[GasState]]
    in_flux: float
    out_flux: float
    diff_flux: float
    delta_c: Optional[float]
    q_eff: Optional[float]
    consumption: float
    perfusion: Optional[float]
    extraction: Optional[float]
    conc_error: float
    next_inflow: InflowConcentrations

    def po2(self, bctype: BoundaryClass) -> Optional[float]:
        state = self.states[bctype]
        return None if state is None else state.pressure


@dataclass
class BalanceResult:
    status: LoopStatus
    records: List[IterationRecord]
    case: int = 1

    @property
    def converged(self) -> bool:
        return self.status is LoopStatus.CONVERGED

    @property
    def iterations(self) -> int:
        return len(self.records)

    @property
    def last(self) -> IterationRecord:
        return self.records[-1]


class Reporter(Protocol):
    def write(self, record: IterationRecord) -> None:
        ...


class GasBalanceLoop:
    """
    Fixed-point iteration on the boundary O2 concentrations of a network.

    Each pass runs the transport solver with the current inflow
    concentrations, sums boundary flows/fluxes, and feeds the outflow
    venule and capillary concentrations back as the next inflow. Arteriole
    inflow is a boundary condition and is never changed.
    """

    def __init__(self, config: BalanceConfig, solver: TransportSolver,
                 reporter: Optional[Reporter] = None):
        self.config = config
        self.solver = solver
        self.reporter = reporter
        self.nodes = list(solver.boundary_nodes())
        self.status = LoopStatus.RUNNING

    def initial_inflow(self) -> InflowConcentrations:
        cfg = self.config
        hd = cfg.hematocrit
        return InflowConcentrations(
            arteriole=blood_conc(cfg.inflow_po2.arteriole, hd, cfg.blood),
            venule=blood_conc(cfg.inflow_po2.venule, hd, cfg.blood),
            capillary=blood_conc(cfg.inflow_po2.capillary, hd, cfg.blood),
        )

    def step(self, inflow: InflowConcentrations, iteration: int, case: int = 1) -> IterationRecord:
        cfg = self.config
        hd = cfg.hematocrit
        output = self.solver.solve(inflow)
        agg = aggregate_boundaries(self.nodes, output.flow, output.flux, cfg.flow_factor)

        conc: Dict[BoundaryClass, Optional[float]] = {}
        for bctype in BoundaryClass:
            if bctype.is_inflow:
                conc[bctype] = inflow.for_class(bctype)
            elif agg.present(bctype):
                conc[bctype] = agg.concentration(bctype)
            else:
                conc[bctype] = None

        states = {
            bctype: None if c is None else inverse_blood_conc(
                c, hd, cfg.blood, cfg.root_tolerance, cfg.root_max_iter)
            for bctype, c in conc.items()
        }

        # Consumption, extraction and perfusion
        in_flux = agg.in_flux
        out_flux = agg.out_flux
        diff_flux = in_flux - out_flux
        c_art = conc[BoundaryClass.INFLOW_ARTERIOLE]
        c_ven = conc[BoundaryClass.OUTFLOW_VENULE]

        delta_c = q_eff = perfusion = None
        if c_ven is not None:
            delta_c = c_art - c_ven
            if delta_c != 0.0:
                q_eff = diff_flux / delta_c
                perfusion = q_eff / cfg.volume
            else:
                logger.warning("effective_flow_undefined", case=case, iteration=iteration)
        consumption = diff_flux / cfg.volume
        extraction = diff_flux / (cfg.volume * c_art) if c_art != 0.0 else None

        conc_error = 0.0
        for in_cls, out_cls in FEEDBACK.items():
            if conc[out_cls] is not None:
                conc_error = max(conc_error, abs(conc[in_cls] - conc[out_cls]))

        next_inflow = replace(
            inflow,
            venule=_fed_back(conc, BoundaryClass.OUTFLOW_VENULE, inflow.venule),
            capillary=_fed_back(conc, BoundaryClass.OUTFLOW_CAPILLARY, inflow.capillary),
        )

        return IterationRecord(
            case=case, iteration=iteration, aggregate=agg, conc=conc, states=states,
            in_flux=in_flux, out_flux=out_flux, diff_flux=diff_flux, delta_c=delta_c,
            q_eff=q_eff, consumption=consumption, perfusion=perfusion,
            extraction=extraction, conc_error=conc_error, next_inflow=next_inflow,
        )

    def run(self, case: int = 1) -> BalanceResult:
        cfg = self.config
        log = logger.bind(case=case)
        inflow = self.initial_inflow()
        records: List[IterationRecord] = []
        self.status = LoopStatus.RUNNING

        for k in range(1, cfg.max_iterations + 1):
            record = self.step(inflow, k, case)
            records.append(record)
            if self.reporter is not None:
                self.reporter.write(record)
            log.info("bc_iteration", iteration=k, conc_error=record.conc_error,
                     consumption=record.consumption)

            if record.conc_error <= cfg.tolerance:
                self.status = LoopStatus.CONVERGED
                break
            inflow = record.next_inflow
        else:
            self.status = LoopStatus.EXHAUSTED
            log.warning("bc_loop_exhausted", iterations=cfg.max_iterations,
                        conc_error=records[-1].conc_error, tolerance=cfg.tolerance)

        log.info("bc_loop_finished", status=self.status.value, iterations=len(records))
        return BalanceResult(self.status, records, case)


def _fed_back(conc: Mapping[BoundaryClass, Optional[float]], out_cls: BoundaryClass,
              current: float) -> float:
    value = conc[out_cls]
    return current if value is None else value


def run_series(config: BalanceConfig, solver_factory: Callable[[BalanceConfig], TransportSolver],
               cases: Iterable[Mapping[str, float]], reporter: Optional[Reporter] = None
               ) -> List[BalanceResult]:
    """
    Run the balance loop once per case. Each case is a mapping of
    configuration overrides applied to `config`; cases are numbered from 1.
    """
    results = []
    for i, overrides in enumerate(cases, start=1):
        cfg = config.with_overrides(**overrides)
        loop = GasBalanceLoop(cfg, solver_factory(cfg), reporter)
        results.append(loop.run(case=i))
    return results
