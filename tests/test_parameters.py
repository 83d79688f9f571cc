"""
Tests for famconv.parameters and famconv.family_types.
"""

from datetime import date
from enum import Enum

import pytest

from famconv.family_types import DEFAULT_TYPE_NAME, TYPE_NAME_KEY, FamilyTypeBuilder, build_family_types, type_values
from famconv.model import ConversionOptions, ElementClass
from famconv.parameters import (
    INTEGER,
    LENGTH,
    TEXT,
    YES_NO,
    ParameterMapper,
    declared_type_for,
    is_legal_name,
    normalize_declared_type,
    parameter_group,
    sanitize_parameter_name,
)


class Finish(Enum):
    MATTE = 1
    GLOSS = 2


@pytest.fixture
def mapper():
    return ParameterMapper()


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------


class TestNames:
    def test_forbidden_characters_replaced(self, mapper):
        assert mapper.map_name("Area/Room") == "Area_Room"
        assert mapper.map_name('a<b>c"d') == "a_b_c_d"

    @pytest.mark.parametrize("name", ["Height", "Fire Rating", "Width (mm)", "Ünïcode"])
    def test_legal_names_are_idempotent(self, mapper, name):
        once = mapper.map_name(name)
        assert mapper.map_name(once) == once

    def test_builtin_map(self, mapper):
        assert mapper.map_name("NominalHeight") == "Height"
        assert mapper.map_name("Reference") == "Type Mark"

    def test_builtin_map_can_be_disabled(self):
        assert ParameterMapper(include_builtin=False).map_name("NominalHeight") == "NominalHeight"

    def test_run_mapping_wins(self, mapper):
        options = ConversionOptions(parameter_mapping={"NominalHeight": "Overall Height"})
        assert mapper.map_name("NominalHeight", options) == "Overall Height"

    def test_sanitize_empty_name(self):
        assert sanitize_parameter_name("") == "Parameter"
        assert sanitize_parameter_name(None) == "Parameter"

    def test_is_legal_name(self):
        assert is_legal_name("Height")
        assert not is_legal_name("a:b")
        assert not is_legal_name("")


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------


class TestValues:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            (None, None),
            (True, True),
            (3, 3),
            (2.5, 2.5),
            ("text", "text"),
            (Finish.GLOSS, "GLOSS"),
            (date(2024, 3, 7), "2024-03-07"),
        ],
    )
    def test_map_value(self, mapper, raw, expected):
        assert mapper.map_value(raw) == expected

    def test_map_value_keeps_bool_type(self, mapper):
        assert mapper.map_value(False) is False

    def test_unknown_objects_become_text(self, mapper):
        assert mapper.map_value([1, 2]) == "[1, 2]"

    @pytest.mark.parametrize(
        "value,declared,expected",
        [
            ("12", "Integer", 12),
            ("abc", "Integer", 0),
            (4.0, "Integer", 4),
            ("1.5", "Length", 1.5),
            ("wide", "Length", 0.0),
            ("yes", "YesNo", True),
            ("maybe", "YesNo", False),
            (7, "Text", "7"),
            ("x", "bogus", "x"),
        ],
    )
    def test_convert_by_declared_type(self, mapper, value, declared, expected):
        assert mapper.convert_by_declared_type(value, declared) == expected

    def test_normalize_declared_type(self):
        assert normalize_declared_type("yesno") == YES_NO
        assert normalize_declared_type(None) == TEXT
        assert normalize_declared_type("unknown") == TEXT

    @pytest.mark.parametrize("value,expected", [(True, YES_NO), (3, INTEGER), (2.5, LENGTH), ("a", TEXT)])
    def test_declared_type_for(self, value, expected):
        assert declared_type_for(value) == expected

    @pytest.mark.parametrize(
        "name,group",
        [
            ("Width", "PG_GEOMETRY"),
            ("Overall Height", "PG_GEOMETRY"),
            ("Material Finish", "PG_MATERIALS"),
            ("Unit Cost", "PG_COST"),
            ("Manufacturer", "PG_IDENTITY_DATA"),
            ("Comments", "PG_GENERAL"),
            ("", "PG_GENERAL"),
        ],
    )
    def test_parameter_group(self, name, group):
        assert parameter_group(name) == group


class TestParameterSets:
    def test_map_parameters_renames_and_drops_none(self, mapper):
        result = mapper.map_parameters({"NominalWidth": 0.9, "Note/1": "x", "Empty": None})
        assert result == {"Width": 0.9, "Note_1": "x"}

    def test_one_bad_entry_does_not_fail_the_set(self, mapper):
        class Unprintable:
            def __str__(self):
                raise RuntimeError("cannot render")

        result = mapper.map_parameters({"Good": 1, "Bad": Unprintable()})
        assert result == {"Good": 1}

    def test_declared_types_are_applied(self, mapper):
        result = mapper.map_parameters({"Count": "3"}, declared_types={"Count": "Integer"})
        assert result == {"Count": 3}

    def test_convert_attributes_defaults(self, mapper):
        result = mapper.convert_attributes(
            {"Material": "", "LineStyle": None, "FillPattern": "", "Height": 2.7, "Width": 0.2, "Ignored": 1},
            ElementClass.WALL,
        )
        assert result == {
            "Material": "Default",
            "LineStyle": "Thin Lines",
            "FillPattern": "Solid",
            "Height": 2.7,
            "Width": 0.2,
        }

    def test_convert_attributes_empty_source(self, mapper):
        assert mapper.convert_attributes(None, ElementClass.WALL) == {}


# ---------------------------------------------------------------------------
# Family types
# ---------------------------------------------------------------------------


class TestFamilyTypes:
    def test_no_tables_gives_default(self):
        assert build_family_types([]) == [{TYPE_NAME_KEY: DEFAULT_TYPE_NAME}]
        assert build_family_types(None) == [{TYPE_NAME_KEY: DEFAULT_TYPE_NAME}]

    def test_unnamed_tables_get_numbered_defaults(self):
        variants = build_family_types([{"Width": 1}, {"Width": 2}, {"Width": 3}])
        assert [v[TYPE_NAME_KEY] for v in variants] == ["Default", "Default 2", "Default 3"]

    def test_duplicate_names_merge_in_first_position(self):
        variants = build_family_types(
            [
                {TYPE_NAME_KEY: "A", "Width": 1, "Height": 2},
                {TYPE_NAME_KEY: "B", "Width": 5},
                {TYPE_NAME_KEY: "A", "Width": 9},
            ]
        )
        assert [v[TYPE_NAME_KEY] for v in variants] == ["A", "B"]
        assert variants[0] == {TYPE_NAME_KEY: "A", "Width": 9, "Height": 2}

    def test_type_name_is_first_key(self):
        variants = FamilyTypeBuilder().build([{"Width": 1, TYPE_NAME_KEY: "Narrow"}])
        assert list(variants[0])[0] == TYPE_NAME_KEY

    def test_blank_type_name_is_unnamed(self):
        variants = build_family_types([{TYPE_NAME_KEY: "  ", "Width": 1}])
        assert variants[0][TYPE_NAME_KEY] == "Default"

    def test_type_values_strip_name(self):
        assert type_values({TYPE_NAME_KEY: "A", "Width": 1}) == {"Width": 1}
