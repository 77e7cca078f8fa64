import pytest

from oxybal.boundary import BoundaryClass, BoundaryNode
from oxybal.physiology import BloodGasParams


@pytest.fixture
def params() -> BloodGasParams:
    """Rat blood profile used throughout the tests."""
    return BloodGasParams.from_hill(fn=2.7, p50=26.0, alphab=3.1e-5, cs=0.2, plow=0.1, phigh=100.0)


@pytest.fixture
def hd() -> float:
    return 0.4


@pytest.fixture
def mixed_nodes():
    """Small network: one arteriole, venule and capillary in; venule and capillary out."""
    nodes = [
        BoundaryNode(node=1, segment=0, bctype=BoundaryClass.INFLOW_ARTERIOLE),
        BoundaryNode(node=2, segment=1, bctype=BoundaryClass.INFLOW_VENULE),
        BoundaryNode(node=3, segment=2, bctype=BoundaryClass.INFLOW_CAPILLARY),
        BoundaryNode(node=4, segment=3, bctype=BoundaryClass.OUTFLOW_VENULE),
        BoundaryNode(node=5, segment=4, bctype=BoundaryClass.OUTFLOW_CAPILLARY),
    ]
    flows = [60.0, 20.0, 20.0, 70.0, 30.0]
    return nodes, flows
