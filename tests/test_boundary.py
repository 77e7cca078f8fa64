import pytest

from oxybal.boundary import BoundaryAggregate, BoundaryClass, BoundaryNode, aggregate_boundaries
from oxybal.errors import DivisionByZeroError, UnclassifiedBoundaryNodeError


def test_venule_aggregation():
    nodes = [
        BoundaryNode(node=1, segment=0, bctype=BoundaryClass.INFLOW_VENULE),
        BoundaryNode(node=2, segment=1, bctype=BoundaryClass.INFLOW_VENULE),
        BoundaryNode(node=3, segment=2, bctype=BoundaryClass.OUTFLOW_VENULE),
    ]
    agg = aggregate_boundaries(nodes, [10.0, 20.0, 30.0], [1.0, 2.0, 2.5])

    assert agg.flow[BoundaryClass.INFLOW_VENULE] == 30.0
    assert agg.flux[BoundaryClass.INFLOW_VENULE] == 3.0
    assert agg.count[BoundaryClass.INFLOW_VENULE] == 2
    assert agg.concentration(BoundaryClass.INFLOW_VENULE) == pytest.approx(0.1)
    assert agg.concentration(BoundaryClass.OUTFLOW_VENULE) == pytest.approx(2.5 / 30.0)
    assert agg.in_flux == pytest.approx(3.0)
    assert agg.out_flux == pytest.approx(2.5)


def test_flux_factor_divides_flux_only():
    nodes = [BoundaryNode(node=1, segment=0, bctype=BoundaryClass.OUTFLOW_CAPILLARY)]
    agg = aggregate_boundaries(nodes, [4.0], [8.0], flux_factor=100.0)
    assert agg.flow[BoundaryClass.OUTFLOW_CAPILLARY] == 4.0
    assert agg.flux[BoundaryClass.OUTFLOW_CAPILLARY] == pytest.approx(0.08)


def test_raw_codes_are_classified():
    nodes = [BoundaryNode(node=1, segment=0, bctype=5)]
    agg = aggregate_boundaries(nodes, [2.0], [1.0])
    assert agg.count[BoundaryClass.INFLOW_ARTERIOLE] == 1


def test_unclassified_node():
    nodes = [
        BoundaryNode(node=1, segment=0, bctype=BoundaryClass.INFLOW_VENULE),
        BoundaryNode(node=17, segment=1, bctype=3),
    ]
    with pytest.raises(UnclassifiedBoundaryNodeError) as info:
        aggregate_boundaries(nodes, [1.0, 1.0], [0.1, 0.1])
    assert info.value.details == {"node": 17, "bctyp": 3}


@pytest.mark.parametrize("code", [0, 3, 10, -4])
def test_from_code_rejects_unknown(code):
    with pytest.raises(UnclassifiedBoundaryNodeError):
        BoundaryClass.from_code(code)


def test_from_code():
    assert BoundaryClass.from_code(9) is BoundaryClass.OUTFLOW_CAPILLARY
    assert BoundaryClass.OUTFLOW_CAPILLARY.label == "Out Cap"
    assert not BoundaryClass.OUTFLOW_CAPILLARY.is_inflow
    assert BoundaryClass.INFLOW_CAPILLARY.is_inflow


def test_zero_flow_is_an_error():
    agg = BoundaryAggregate()
    agg.add(BoundaryClass.OUTFLOW_ARTERIOLE, 0.0, 0.0)
    assert agg.present(BoundaryClass.OUTFLOW_ARTERIOLE)
    with pytest.raises(DivisionByZeroError):
        agg.concentration(BoundaryClass.OUTFLOW_ARTERIOLE)
    with pytest.raises(ZeroDivisionError):
        agg.concentration(BoundaryClass.OUTFLOW_VENULE)


def test_aggregate_starts_empty():
    agg = BoundaryAggregate()
    assert all(v == 0.0 for v in agg.flow.values())
    assert not any(agg.present(cls) for cls in BoundaryClass)
