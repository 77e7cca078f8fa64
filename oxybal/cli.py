"""Command line driver: run the gas balance loop with the mixed-network solver."""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from oxybal.core import run_series
from oxybal.errors import OxyBalError
from oxybal.io import ConcReportWriter, GasBalanceIO
from oxybal.physiology import dissociation_curve
from oxybal.transport import MixedNetworkSolver

EXIT_CONVERGED = 0
EXIT_ERROR = 1
EXIT_EXHAUSTED = 2


def configure_logging(verbose: bool = False, json_logs: bool = False) -> None:
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.add_log_level,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.INFO),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="oxybal",
        description="Balance inflow and outflow O2 concentrations of a microvascular network",
    )
    parser.add_argument("params", type=Path, help="Parameter file (<value> <name> per line)")
    parser.add_argument("boundary", type=Path, help="Boundary node CSV (node,segment,bctyp,flow)")
    parser.add_argument("--consumption", type=float, default=0.0,
                        help="Tissue O2 consumption removed by the mixed-network solver")
    parser.add_argument("--cases", type=Path, default=None,
                        help="CSV of parameter overrides, one case per row")
    parser.add_argument("--out", type=Path, default=Path("Current"), help="Output directory")
    parser.add_argument("--curve", action="store_true", help="Also write the dissociation curve")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Log as JSON lines")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose, args.json_logs)
    logger = structlog.get_logger()

    try:
        config = GasBalanceIO.load_config(args.params)
        nodes, node_flow = GasBalanceIO.parse_boundary_csv(args.boundary.read_text())
        cases = [{}]
        if args.cases is not None:
            cases = GasBalanceIO.parse_cases_csv(args.cases.read_text())

        def make_solver(cfg):
            return MixedNetworkSolver(nodes, node_flow, args.consumption, cfg.flow_factor)

        writer = ConcReportWriter(args.out)
        results = run_series(config, make_solver, cases, writer)
        writer.write_summary()

        if args.curve:
            dissociation_curve(config.blood, config.hematocrit).to_csv(args.out / "curve.csv", index=False)
    except OxyBalError as e:
        logger.error("run_failed", error=e.message, **e.details)
        return EXIT_ERROR
    except OSError as e:
        logger.error("io_failed", error=str(e))
        return EXIT_ERROR

    for result in results:
        print(f"case {result.case:3d}: {result.status.value} after {result.iterations} iterations "
              f"(conc error {result.last.conc_error:.3e})")
    return EXIT_CONVERGED if all(r.converged for r in results) else EXIT_EXHAUSTED


if __name__ == "__main__":
    sys.exit(main())
