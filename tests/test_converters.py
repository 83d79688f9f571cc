"""
Tests for famconv.converters and famconv.placement.
"""

import pytest

from conftest import FakeDocument, FakeWriter, curve_brep, square_mesh
from famconv.contracts import TargetShape
from famconv.converters import BrepConverter, ConverterRegistry, GeometryConverter, MeshConverter
from famconv.kernel import BrepPayload, BrepTopology, MeshKernel, MeshPayload
from famconv.model import ConversionOptions, ElementClass, GeometryKind, GeometryNode
from famconv.outcome import ConversionOutcome
from famconv.placement import DEFAULT_WALL_HEIGHT, STRATEGIES, place_direct_shape, strategy_for
from famconv.progress import ProgressChanged, RecordingSink


@pytest.fixture
def registry():
    return ConverterRegistry.default(MeshKernel(), FakeWriter())


@pytest.fixture
def options():
    return ConversionOptions()


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------


class TestMeshConverter:
    def test_success_sets_target_object(self, options):
        node = GeometryNode("slab", kind=GeometryKind.MESH, payload=square_mesh())
        converter = MeshConverter(MeshKernel(), FakeWriter())
        assert converter.convert(node, options) is ConversionOutcome.SUCCESS
        assert isinstance(node.target_object, TargetShape)
        assert node.target_object.representation == "mesh"

    def test_dict_payload_accepted(self, options):
        payload = {"vertices": [(0, 0, 0), (1, 0, 0), (0, 1, 0)], "faces": [(0, 1, 2)]}
        node = GeometryNode("tri", kind=GeometryKind.MESH, payload=payload)
        assert MeshConverter(MeshKernel(), FakeWriter()).convert(node, options) is ConversionOutcome.SUCCESS

    def test_missing_payload_is_invalid_input(self, options):
        node = GeometryNode("empty", kind=GeometryKind.MESH)
        assert MeshConverter(MeshKernel(), FakeWriter()).convert(node, options) is ConversionOutcome.INVALID_INPUT

    def test_wrong_kind_is_unsupported(self, options):
        node = GeometryNode("brep", kind=GeometryKind.BREP, payload=curve_brep())
        converter = MeshConverter(MeshKernel(), FakeWriter())
        assert converter.convert(node, options) is ConversionOutcome.UNSUPPORTED_GEOMETRY
        assert node.target_object is None

    def test_everything_degenerate_fails(self, options):
        mesh = MeshPayload.from_arrays([(0, 0, 0), (1, 0, 0), (2, 0, 0)], [(0, 1, 2)])
        node = GeometryNode("line", kind=GeometryKind.MESH, payload=mesh)
        converter = MeshConverter(MeshKernel(), FakeWriter())
        assert converter.convert(node, options) is ConversionOutcome.FAILED
        assert "no faces" in converter.last_detail

    def test_progress_reported_to_sink(self, options):
        sink = RecordingSink()
        node = GeometryNode("slab", kind=GeometryKind.MESH, payload=square_mesh())
        MeshConverter(MeshKernel(), FakeWriter()).convert(node, options, sink)
        assert sink.of_type(ProgressChanged)[-1].percent == 100.0


class TestBrepConverter:
    def test_curve_becomes_curve_shape(self, options):
        node = GeometryNode("axis", kind=GeometryKind.BREP, payload=curve_brep(closed=True))
        assert BrepConverter(MeshKernel(), FakeWriter()).convert(node, options) is ConversionOutcome.SUCCESS
        assert node.target_object.is_curve
        assert node.target_object.closed

    def test_solid_is_tessellated(self, options):
        payload = BrepPayload(BrepTopology.SOLID, data=None, tessellator=lambda data, tol: square_mesh())
        node = GeometryNode("box", kind=GeometryKind.BREP, payload=payload)
        assert BrepConverter(MeshKernel(), FakeWriter()).convert(node, options) is ConversionOutcome.SUCCESS
        assert node.target_object.representation == "mesh"

    def test_kernel_failure_is_failed(self, options):
        def tessellator(data, tolerance):
            raise RuntimeError("bad solid")

        node = GeometryNode("box", kind=GeometryKind.BREP, payload=BrepPayload(BrepTopology.SOLID, tessellator=tessellator))
        converter = BrepConverter(MeshKernel(), FakeWriter())
        assert converter.convert(node, options) is ConversionOutcome.FAILED
        assert "bad solid" in converter.last_detail

    def test_non_brep_payload(self, options):
        node = GeometryNode("odd", kind=GeometryKind.BREP, payload=square_mesh())
        assert BrepConverter(MeshKernel(), FakeWriter()).convert(node, options) is ConversionOutcome.FAILED


class TestRegistry:
    def test_default_order(self, registry):
        assert [c.name for c in registry.converters] == ["brep", "mesh"]

    def test_unknown_kind_is_unsupported(self, registry, options):
        node = GeometryNode("mystery", payload=object())
        result = registry.convert_node(node, options)
        assert result.outcome is ConversionOutcome.UNSUPPORTED_GEOMETRY
        assert result.detail == "unsupported geometry (unknown)"

    def test_raising_converter_is_contained(self, options):
        class Exploding(GeometryConverter):
            name = "exploding"

            def can_convert(self, kind):
                return True

            def _build(self, node, options, sink):
                raise ZeroDivisionError("boom")

        registry = ConverterRegistry([Exploding(MeshKernel(), FakeWriter())])
        node = GeometryNode("x", kind=GeometryKind.MESH, payload=square_mesh())
        result = registry.convert_node(node, options)
        assert result.outcome is ConversionOutcome.FAILED
        assert result.converter == "exploding"

    def test_register_first_takes_priority(self, registry):
        override = MeshConverter(MeshKernel(), FakeWriter())
        override.name = "override"
        registry.register(override, first=True)
        assert registry.select(GeometryKind.MESH) is override


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------


def _converted(name, element_class, payload, kind, **params):
    node = GeometryNode(name, kind=kind, element_class=element_class, payload=payload, parameters=params)
    ConverterRegistry.default(MeshKernel(), FakeWriter()).convert(node, ConversionOptions())
    return node


class TestPlacement:
    def test_default_strategy_is_direct_shape(self):
        assert strategy_for(ElementClass.FURNITURE) is place_direct_shape
        assert STRATEGIES[ElementClass.ROOF] is place_direct_shape

    def test_wall_from_curve(self):
        writer = FakeWriter()
        document = FakeDocument(None, False, "doc", None)
        node = _converted("Wall A", ElementClass.WALL, curve_brep(), GeometryKind.BREP, Height=2.7)
        element = strategy_for(ElementClass.WALL)(writer, document, node)
        assert element.construction == "wall"
        assert element.parameters["Unconnected Height"] == pytest.approx(2.7)

    def test_wall_height_default(self):
        writer = FakeWriter()
        document = FakeDocument(None, False, "doc", None)
        node = _converted("Wall B", ElementClass.WALL, curve_brep(), GeometryKind.BREP)
        element = strategy_for(ElementClass.WALL)(writer, document, node)
        assert element.parameters["Unconnected Height"] == DEFAULT_WALL_HEIGHT

    def test_wall_from_mesh_falls_back(self):
        writer = FakeWriter()
        document = FakeDocument(None, False, "doc", None)
        node = _converted("Wall C", ElementClass.WALL, square_mesh(), GeometryKind.MESH)
        assert strategy_for(ElementClass.WALL)(writer, document, node).construction == "direct_shape"

    def test_floor_needs_closed_profile(self):
        writer = FakeWriter()
        document = FakeDocument(None, False, "doc", None)
        square = ((0, 0, 0), (4, 0, 0), (4, 4, 0), (0, 4, 0))
        closed = _converted("Floor", ElementClass.FLOOR, curve_brep(square, closed=True), GeometryKind.BREP)
        opened = _converted("Floor open", ElementClass.FLOOR, curve_brep(square), GeometryKind.BREP)
        assert strategy_for(ElementClass.FLOOR)(writer, document, closed).construction == "floor"
        assert strategy_for(ElementClass.FLOOR)(writer, document, opened).construction == "direct_shape"
