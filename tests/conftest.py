"""
Shared fakes and fixtures for the famconv test suite.

``FakeReader`` and ``FakeWriter`` implement the reader/writer protocols in
memory so the orchestrator can be exercised without ifcopenshell or USD.
"""

from contextlib import contextmanager
from pathlib import Path

import pytest

from famconv.contracts import CURVE_REPRESENTATION, MESH_REPRESENTATION, ReaderError, TargetShape, WriterError
from famconv.kernel import BrepPayload, BrepTopology, CurvePayload, MeshKernel, MeshPayload
from famconv.model import FamilyDefinition, GeometryForest, GeometryKind
from famconv.pipeline import Orchestrator
from famconv.progress import RecordingSink


def square_mesh(size=1.0):
    """Two triangles forming a ``size`` x ``size`` square in the XY plane."""
    return MeshPayload.from_arrays(
        [(0, 0, 0), (size, 0, 0), (size, size, 0), (0, size, 0)],
        [(0, 1, 2), (0, 2, 3)],
    )


def curve_brep(points=((0, 0, 0), (5, 0, 0)), closed=False):
    return BrepPayload(BrepTopology.CURVE, curve=CurvePayload.from_points(points, closed=closed))


def mesh_spec(name, **extra):
    spec = {"name": name, "kind": GeometryKind.MESH, "payload": square_mesh()}
    spec.update(extra)
    return spec


class CountdownEvent:
    """Cancellation token that reports ``is_set`` after ``allowed`` polls."""

    def __init__(self, allowed):
        self.allowed = allowed
        self.polls = 0

    def is_set(self):
        self.polls += 1
        return self.polls > self.allowed


class FakeReader:
    extensions = (".fake",)

    def __init__(self, specs=None, *, family=None, readable=True, open_error=None, fail_at=None):
        self.specs = list(specs or [])
        self.family = family
        self.readable = readable
        self.open_error = open_error
        self.fail_at = fail_at
        self.opened = 0
        self.closed = 0

    def can_read(self, path):
        return self.readable

    def open(self, path):
        if self.open_error is not None:
            raise self.open_error
        self.opened += 1
        return {"path": Path(path)}

    def read_nodes(self, handle, forest, options):
        created = []
        for index, spec in enumerate(self.specs):
            if self.fail_at is not None and index == self.fail_at:
                raise ReaderError(f"broken record {index}")
            spec = dict(spec)
            parent_index = spec.pop("parent", None)
            parent = created[parent_index] if parent_index is not None else None
            node = forest.create(parent=parent, **spec)
            created.append(node)
            yield node

    def read_family(self, handle, path, options):
        if self.family is not None:
            return self.family
        forest = GeometryForest()
        for _ in self.read_nodes(handle, forest, options):
            pass
        return FamilyDefinition(name=Path(path).stem, category="Generic Models", geometry=forest)

    def close(self, handle):
        self.closed += 1


class FakeDocument:
    def __init__(self, template, family, name, category):
        self.template = template
        self.family = family
        self.name = name
        self.category = category
        self.elements = []
        self.family_parameters = {}
        self.types = {}
        self.transactions = []


class FakeElement:
    def __init__(self, classification, shape, name, construction):
        self.classification = classification
        self.shape = shape
        self.name = name
        self.construction = construction
        self.parameters = {}


class FakeWriter:
    document_suffix = ".doc"
    family_suffix = ".fam"
    template_suffix = ".tpl"

    def __init__(
        self,
        *,
        fail_document=False,
        save_result=True,
        fail_elements=(),
        reject_parameters=(),
        fail_types=(),
    ):
        self.fail_document = fail_document
        self.save_result = save_result
        self.fail_elements = set(fail_elements)
        self.reject_parameters = set(reject_parameters)
        self.fail_types = set(fail_types)
        self.documents = []
        self.saved = []

    def build_shape(self, classification, geometry, *, name=""):
        if isinstance(geometry, MeshPayload):
            return TargetShape(MESH_REPRESENTATION, geometry, name=name)
        if isinstance(geometry, CurvePayload):
            return TargetShape(CURVE_REPRESENTATION, geometry, name=name, closed=geometry.closed)
        raise WriterError(f"cannot build from {type(geometry).__name__}")

    def create_document(self, template, *, family=False, name=None, category=None):
        if self.fail_document:
            raise WriterError("document refused")
        document = FakeDocument(template, family, name, category)
        self.documents.append(document)
        return document

    def create_element(self, document, classification, shape, *, name="", construction="direct_shape"):
        if name in self.fail_elements:
            raise WriterError(f"element {name} refused")
        element = FakeElement(classification, shape, name, construction)
        document.elements.append(element)
        return element

    def set_parameter(self, element, name, value):
        if name in self.reject_parameters:
            return False
        element.parameters[name] = value
        return True

    def add_family_parameter(self, document, name, value, *, instance=True, group="PG_GENERAL", declared_type="Text"):
        if name in self.reject_parameters:
            return False
        document.family_parameters[name] = {
            "value": value,
            "instance": instance,
            "group": group,
            "declared_type": declared_type,
        }
        return True

    def create_family_type(self, document, type_name, values):
        if type_name in self.fail_types:
            return False
        document.types[type_name] = dict(values)
        return True

    def save(self, document, path, overwrite=True):
        if not self.save_result:
            return False
        Path(path).write_text(f"{document.name}\n", encoding="utf-8")
        self.saved.append(Path(path))
        return True

    @contextmanager
    def transaction(self, document, label):
        document.transactions.append(label)
        yield document


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "model.fake"
    path.write_text("fake source\n", encoding="utf-8")
    return path


@pytest.fixture
def writer():
    return FakeWriter()


@pytest.fixture
def make_orchestrator(sink, writer):
    def _make(reader=None, *, writer_override=None, **kwargs):
        return Orchestrator(
            reader if reader is not None else FakeReader(),
            writer_override if writer_override is not None else writer,
            sink=sink,
            kernel=MeshKernel(),
            **kwargs,
        )

    return _make
