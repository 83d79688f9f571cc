"""
Tests for famconv.usd_family (requires usd-core).
"""

import pytest

pytest.importorskip("pxr")

from pxr import Usd, UsdGeom  # noqa: E402

from conftest import FakeReader, curve_brep, mesh_spec, square_mesh  # noqa: E402
from famconv.contracts import TargetShape, WriterError  # noqa: E402
from famconv.kernel import CurvePayload  # noqa: E402
from famconv.model import ConversionOptions, ElementClass, FamilyDefinition, GeometryForest, GeometryKind  # noqa: E402
from famconv.outcome import ConversionOutcome  # noqa: E402
from famconv.pipeline import Orchestrator  # noqa: E402
from famconv.usd_family import PARAM_NAMESPACE, TYPE_VARIANT_SET, UsdFamilyReader, UsdFamilyWriter  # noqa: E402


@pytest.fixture
def usd_writer():
    return UsdFamilyWriter()


def _mesh_shape(writer, name="Box"):
    return writer.build_shape(ElementClass.GENERIC_MODEL, square_mesh(), name=name)


class TestShapes:
    def test_mesh_shape(self, usd_writer):
        shape = _mesh_shape(usd_writer)
        assert isinstance(shape, TargetShape)
        assert shape.data["points"].shape == (4, 3)
        assert shape.data["faces"].shape == (2, 3)

    def test_curve_shape_keeps_closed_flag(self, usd_writer):
        curve = CurvePayload.from_points([(0, 0, 0), (1, 0, 0), (1, 1, 0)], closed=True)
        shape = usd_writer.build_shape(ElementClass.FLOOR, curve)
        assert shape.is_curve and shape.closed

    def test_unknown_geometry_rejected(self, usd_writer):
        with pytest.raises(WriterError):
            usd_writer.build_shape(ElementClass.WALL, object())


class TestDocuments:
    def test_stage_layout(self, usd_writer):
        document = usd_writer.create_document(None, name="Site model")
        stage = document.stage
        assert str(stage.GetDefaultPrim().GetPath()) == "/World"
        assert UsdGeom.GetStageUpAxis(stage) == UsdGeom.Tokens.z
        assert document.root.GetCustomDataByKey("famconv:documentName") == "Site model"
        assert document.root.GetCustomDataByKey("famconv:isFamily") is False

    def test_elements_grouped_by_category(self, usd_writer):
        document = usd_writer.create_document(None)
        shape = _mesh_shape(usd_writer)
        first = usd_writer.create_element(document, ElementClass.GENERIC_MODEL, shape, name="Box")
        second = usd_writer.create_element(document, ElementClass.GENERIC_MODEL, shape, name="Box")
        assert first.path == "/World/Generic_Models/Box"
        assert second.path == "/World/Generic_Models/Box_1"
        mesh = UsdGeom.Mesh(first.prim.GetChild("Geometry"))
        assert list(mesh.GetFaceVertexCountsAttr().Get()) == [3, 3]
        assert len(mesh.GetExtentAttr().Get()) == 2

    def test_wall_curve_element(self, usd_writer):
        document = usd_writer.create_document(None)
        curve = CurvePayload.from_points([(0, 0, 0), (4, 0, 0)])
        shape = usd_writer.build_shape(ElementClass.WALL, curve, name="Wall")
        element = usd_writer.create_element(document, ElementClass.WALL, shape, name="Wall", construction="wall")
        geometry = element.prim.GetChild("Geometry")
        assert geometry.IsA(UsdGeom.BasisCurves)
        assert element.prim.GetCustomDataByKey("famconv:construction") == "wall"

    def test_parameters_are_typed_attributes(self, usd_writer):
        document = usd_writer.create_document(None)
        element = usd_writer.create_element(document, ElementClass.GENERIC_MODEL, _mesh_shape(usd_writer), name="Box")
        assert usd_writer.set_parameter(element, "Fire Rating", "EI60")
        assert usd_writer.set_parameter(element, "Height", 2.5)
        assert usd_writer.set_parameter(element, "Load Bearing", True)
        assert not usd_writer.set_parameter(element, "Nothing", None)
        attr = element.prim.GetAttribute(f"{PARAM_NAMESPACE}:Fire_Rating")
        assert attr.GetDisplayName() == "Fire Rating"
        assert attr.Get() == "EI60"
        assert element.prim.GetAttribute(f"{PARAM_NAMESPACE}:Height").Get() == pytest.approx(2.5)
        assert element.prim.GetAttribute(f"{PARAM_NAMESPACE}:Load_Bearing").Get() is True

    def test_save_respects_overwrite(self, usd_writer, tmp_path):
        document = usd_writer.create_document(None, name="doc")
        target = tmp_path / "doc.usda"
        assert usd_writer.save(document, target)
        assert target.read_text().startswith("#usda")
        assert not usd_writer.save(document, target, overwrite=False)

    def test_template_becomes_sublayer(self, usd_writer, tmp_path):
        template = tmp_path / "Door.usda"
        Usd.Stage.CreateNew(str(template)).Save()
        document = usd_writer.create_document(template, family=True, category="Doors")
        assert document.stage.GetRootLayer().subLayerPaths[0] == template.resolve().as_posix()


class TestFamilies:
    def _family_document(self, writer):
        document = writer.create_document(None, family=True, name="Desk", category="Furniture")
        writer.add_family_parameter(document, "Material", "Oak", instance=True, group="PG_MATERIALS")
        writer.add_family_parameter(document, "Width", 1.2, instance=False, group="PG_GEOMETRY", declared_type="Length")
        writer.create_family_type(document, "Small", {"Width": 1.2})
        writer.create_family_type(document, "Large Desk", {"Width": 1.8})
        return document

    def test_types_are_variants(self, usd_writer):
        document = self._family_document(usd_writer)
        vset = document.root.GetVariantSets().GetVariantSet(TYPE_VARIANT_SET)
        assert vset.GetVariantNames() == ["Large_Desk", "Small"]
        assert vset.GetVariantSelection() == "Small"
        width = document.root.GetAttribute(f"{PARAM_NAMESPACE}:Width")
        assert width.Get() == pytest.approx(1.2)
        vset.SetVariantSelection("Large_Desk")
        assert width.Get() == pytest.approx(1.8)

    def test_family_round_trip(self, usd_writer, tmp_path):
        document = self._family_document(usd_writer)
        target = tmp_path / "Desk.usda"
        assert usd_writer.save(document, target)

        reader = UsdFamilyReader()
        assert reader.can_read(target)
        family = reader.read_family(reader.open(target), target, ConversionOptions())
        assert family.name == "Desk"
        assert family.category == "Furniture"
        assert family.parameters == {"Material": "Oak"}
        tables = sorted(family.type_parameters, key=lambda t: t["Type Name"])
        assert [t["Type Name"] for t in tables] == ["Large Desk", "Small"]
        assert tables[0]["Width"] == pytest.approx(1.8)
        assert tables[1]["Width"] == pytest.approx(1.2)

    def test_type_order_survives_round_trip(self, usd_writer, tmp_path):
        document = usd_writer.create_document(None, family=True, name="Shelf", category="Furniture")
        usd_writer.add_family_parameter(document, "Depth", None, instance=False, declared_type="Length")
        for type_name, depth in (("Tall", 0.4), ("Compact", 0.3), ("Wide", 0.5)):
            assert usd_writer.create_family_type(document, type_name, {"Depth": depth})
        target = tmp_path / "Shelf.usda"
        assert usd_writer.save(document, target)

        reader = UsdFamilyReader()
        family = reader.read_family(reader.open(target), target, ConversionOptions())
        assert [t["Type Name"] for t in family.type_parameters] == ["Tall", "Compact", "Wide"]
        assert [t["Depth"] for t in family.type_parameters] == pytest.approx([0.4, 0.3, 0.5])

    def test_family_default_hiding_type_value_is_reported(self, usd_writer):
        document = usd_writer.create_document(None, family=True, name="Desk", category="Furniture")
        usd_writer.add_family_parameter(document, "Width", 1.0, instance=True, declared_type="Length")
        assert not usd_writer.create_family_type(document, "Small", {"Width": 1.2})
        assert usd_writer.create_family_type(document, "Plain", {})


class TestReader:
    def test_can_read_checks_signature(self, tmp_path):
        fake = tmp_path / "fake.usda"
        fake.write_text("not usd", encoding="utf-8")
        assert not UsdFamilyReader().can_read(fake)
        assert not UsdFamilyReader().can_read(tmp_path / "missing.usda")

    def test_document_round_trip_through_pipeline(self, tmp_path, source_file):
        writer = UsdFamilyWriter()
        specs = [
            mesh_spec("Table", parameters={"Material": "Oak"}),
            {"name": "Wall 1", "kind": GeometryKind.BREP, "payload": curve_brep()},
        ]
        result = Orchestrator(FakeReader(specs), writer).run(source_file, ConversionOptions(output_path=str(tmp_path)))
        assert result.outcome is ConversionOutcome.SUCCESS

        reader = UsdFamilyReader()
        forest = GeometryForest()
        nodes = list(reader.read_nodes(reader.open(result.value), forest, ConversionOptions()))
        by_name = {node.name: node for node in nodes}
        assert set(by_name) == {"Table", "Wall 1"}
        assert by_name["Table"].kind is GeometryKind.MESH
        assert by_name["Table"].parameters["Material"] == "Oak"
        assert by_name["Wall 1"].kind is GeometryKind.BREP
        assert by_name["Wall 1"].element_class is ElementClass.WALL
        assert by_name["Wall 1"].parameters["Unconnected Height"] == pytest.approx(3.0)

    def test_hidden_prims_skipped(self, usd_writer, tmp_path):
        document = usd_writer.create_document(None)
        element = usd_writer.create_element(document, ElementClass.GENERIC_MODEL, _mesh_shape(usd_writer), name="Ghost")
        UsdGeom.Imageable(element.prim).MakeInvisible()
        target = tmp_path / "hidden.usda"
        usd_writer.save(document, target)

        reader = UsdFamilyReader()
        hidden = list(reader.read_nodes(reader.open(target), GeometryForest(), ConversionOptions()))
        shown = list(
            reader.read_nodes(reader.open(target), GeometryForest(), ConversionOptions(include_hidden_geometry=True))
        )
        assert hidden == []
        assert [node.name for node in shown] == ["Ghost"]

    def test_family_round_trip_through_pipeline(self, tmp_path):
        forest = GeometryForest()
        forest.create(name="Top", kind=GeometryKind.MESH, payload=square_mesh())
        family = FamilyDefinition(
            name="Desk",
            category="Furniture",
            parameters={"Material": "Oak", "Width": 1.0},
            type_parameters=[
                {"Type Name": "Small", "Width": 1.2},
                {"Type Name": "Large", "Width": 1.8},
                {"Type Name": "Compact"},
            ],
            geometry=forest,
        )
        orchestrator = Orchestrator(UsdFamilyReader(), UsdFamilyWriter())
        orchestrator.convert(forest)
        generated = orchestrator.generate_family(family, ConversionOptions(output_path=str(tmp_path)))
        assert generated.outcome is ConversionOutcome.SUCCESS

        parsed = orchestrator.parse_family(generated.value, ConversionOptions())
        assert parsed.ok
        assert parsed.value.parameters == {"Material": "Oak"}
        tables = parsed.value.type_parameters
        assert [t["Type Name"] for t in tables] == ["Small", "Large", "Compact"]
        assert [t["Width"] for t in tables] == pytest.approx([1.2, 1.8, 1.0])
