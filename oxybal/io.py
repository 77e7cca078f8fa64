from io import StringIO
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pandas as pd

from oxybal.boundary import BoundaryClass, BoundaryNode
from oxybal.core import FLOWFAC, BalanceConfig, InflowPressures, IterationRecord, sim_volume
from oxybal.errors import ConfigError
from oxybal.physiology import BloodGasParams

REQUIRED_BLOOD = ("fn", "p50", "alphab", "cs", "plow", "phigh")
OPTIONAL_BLOOD = ("clowfac", "chighfac", "pphighfac")
KNOWN_NAMES = set(REQUIRED_BLOOD + OPTIONAL_BLOOD) | {
    "hd", "po2_art", "po2_ven", "po2_cap", "volume", "vol", "nnt",
    "tolerance", "max_iter", "flowfac", "root_tol", "root_max_iter",
}


class GasBalanceIO:
    @staticmethod
    def parse_params_file(content: str) -> BalanceConfig:
        """
        Parses a parameter file into a BalanceConfig.

        Format: one value per line, written as
            <value> <name> [description ...]
        e.g.
            2.7      fn       Hill exponent
            26.0     p50      half-saturation PO2, mmHg
        Text after '#' is ignored. fn, p50, alphab, cs, plow and phigh are
        required; clowfac, chighfac and pphighfac are derived when absent.
        """
        values: Dict[str, float] = {}
        for lineno, raw in enumerate(content.splitlines(), start=1):
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue
            parts = line.split()
            if len(parts) < 2:
                raise ConfigError(f"Line {lineno}: expected '<value> <name>'", {"line": raw})
            try:
                value = float(parts[0])
            except ValueError:
                raise ConfigError(f"Line {lineno}: '{parts[0]}' is not a number", {"line": raw})
            name = parts[1].lower()
            if name not in KNOWN_NAMES:
                raise ConfigError(f"Line {lineno}: unknown parameter '{parts[1]}'", {"line": raw})
            values[name] = value

        missing = [name for name in REQUIRED_BLOOD if name not in values]
        if missing:
            raise ConfigError(f"Missing blood parameters: {', '.join(missing)}", {"missing": missing})

        blood = BloodGasParams(**{name: values[name] for name in REQUIRED_BLOOD + OPTIONAL_BLOOD
                                  if name in values})

        if "volume" in values:
            volume = values["volume"]
        elif "vol" in values and "nnt" in values:
            volume = sim_volume(values["vol"], int(values["nnt"]))
        else:
            raise ConfigError("Missing simulation volume ('volume', or 'vol' and 'nnt')")

        defaults = BalanceConfig()
        po2 = InflowPressures(
            arteriole=values.get("po2_art", defaults.inflow_po2.arteriole),
            venule=values.get("po2_ven", defaults.inflow_po2.venule),
            capillary=values.get("po2_cap", defaults.inflow_po2.capillary),
        )
        return BalanceConfig(
            blood=blood,
            hematocrit=values.get("hd", defaults.hematocrit),
            inflow_po2=po2,
            volume=volume,
            tolerance=values.get("tolerance", defaults.tolerance),
            max_iterations=int(values.get("max_iter", defaults.max_iterations)),
            flow_factor=values.get("flowfac", FLOWFAC),
            root_tolerance=values.get("root_tol", defaults.root_tolerance),
            root_max_iter=int(values.get("root_max_iter", defaults.root_max_iter)),
        )

    @staticmethod
    def load_config(path: Union[str, Path]) -> BalanceConfig:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Parameter file not found: {path}")
        return GasBalanceIO.parse_params_file(path.read_text())

    @staticmethod
    def parse_boundary_csv(content: str) -> Tuple[List[BoundaryNode], List[float]]:
        """
        Parses boundary nodes from a CSV with columns node, segment, bctyp, flow.
        Segment numbers are 1-based as in network files.
        """
        df = pd.read_csv(StringIO(content))
        missing = {"node", "segment", "bctyp", "flow"} - set(df.columns)
        if missing:
            raise ConfigError(f"Boundary file missing columns: {sorted(missing)}")

        nodes = []
        for row in df.itertuples(index=False):
            bctype = BoundaryClass.from_code(int(row.bctyp), int(row.node))
            nodes.append(BoundaryNode(node=int(row.node), segment=int(row.segment) - 1, bctype=bctype))
        return nodes, df["flow"].astype(float).tolist()

    @staticmethod
    def parse_cases_csv(content: str) -> List[Dict[str, float]]:
        """
        Parses a table of cases: one row per case, columns are BalanceConfig
        override keys (e.g. hematocrit, inflow_po2.arteriole, blood.p50).
        Empty cells leave the base value unchanged.
        """
        df = pd.read_csv(StringIO(content))
        cases = []
        for _, row in df.iterrows():
            cases.append({key: value.item() if hasattr(value, "item") else value
                          for key, value in row.items() if pd.notna(value)})
        return cases


def _fmt(value: Optional[float], digits: int = 3) -> str:
    return "-" if value is None else f"{value:.{digits}f}"


class ConcReportWriter:
    """
    Appends one block per iteration to ConcFile<case>.out in `out_dir`
    and collects summary rows written by write_summary().
    """

    def __init__(self, out_dir: Union[str, Path] = "Current"):
        self.out_dir = Path(out_dir)
        self.out_dir.mkdir(parents=True, exist_ok=True)
        self.rows: List[dict] = []

    def conc_file(self, case: int) -> Path:
        return self.out_dir / f"ConcFile{case:03d}.out"

    def write(self, record: IterationRecord) -> None:
        lines = [f"omain =  {record.iteration}", "Type\t\tFlow\tConc\tFlux\tPO2"]
        agg = record.aggregate
        for bctype in BoundaryClass:
            lines.append(f"{int(bctype)}\t{bctype.label}\t{agg.flow[bctype]:.3f}\t"
                         f"{_fmt(record.conc[bctype])}\t{agg.flux[bctype]:.3f}\t"
                         f"{_fmt(record.po2(bctype))}")
        lines += [
            f"Delta C = {_fmt(record.delta_c, 6)}",
            f"Effective Flow = {_fmt(record.q_eff)} nl/min",
            f"Perfusion = {_fmt(record.perfusion)} cm^3/100cm^3/min",
            f"Consumption = {record.consumption:.6f} cm^3O2/100cm^3/min",
            f"Extraction =  {_fmt(record.extraction)}",
        ]
        with open(self.conc_file(record.case), "a") as ofp:
            ofp.write("\n".join(lines) + "\n\n")

        row = {"case": record.case, "iteration": record.iteration,
               "conc_error": record.conc_error, "diff_flux": record.diff_flux,
               "q_eff": record.q_eff, "consumption": record.consumption,
               "perfusion": record.perfusion, "extraction": record.extraction}
        for bctype in BoundaryClass:
            key = bctype.name.lower()
            row[f"{key}_conc"] = record.conc[bctype]
            row[f"{key}_po2"] = record.po2(bctype)
        self.rows.append(row)

    def summary(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows)

    def write_summary(self, name: str = "summary.csv") -> Path:
        path = self.out_dir / name
        self.summary().to_csv(path, index=False)
        return path
