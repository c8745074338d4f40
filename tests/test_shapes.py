"""Tests for record shape discovery and scalar coercion."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np
import numpy.typing as npt
import pytest
from pydantic import BaseModel

from defpatch import RegistryError, ShapeKind, TypeMismatch, describe
from defpatch.shapes import coerce_scalar, parse_enum, shape_of


class Role(Enum):
    Civilian = 0
    Military = 1


@dataclass
class Component:
    ComponentId: int = 0
    Name: str = ""


class ComponentList(list[Component]):
    pass


@dataclass
class Design:
    Name: str = ""
    DesignId: int = 0
    Kind: Role = Role.Civilian
    Mass: float = 0.0
    Crew: np.int16 = np.int16(0)
    Armed: bool = False
    Parts: list[Component] = field(default_factory=list)
    Spares: ComponentList = field(default_factory=ComponentList)
    Weights: npt.NDArray[np.float32] = field(default_factory=lambda: np.zeros(0, np.float32))
    Hull: Optional[Component] = None
    Extra: dict = field(default_factory=dict)


@dataclass
class Sector:
    SectorId: int = 0
    Neighbour: Optional["Sector"] = None
    Hub: Optional["Station"] = None


class Station(BaseModel):
    StationId: int = 0
    Tags: list[str] = []


class Plain:
    PlainId: int
    _cache: dict


class NoIdentity:
    Name: str


class TestShapeOf:
    def test_field_kinds(self):
        fields = describe(Design).fields
        assert fields["Name"].kind == ShapeKind.TEXT
        assert fields["Kind"].kind == ShapeKind.ENUM
        assert fields["Mass"].kind == ShapeKind.SCALAR
        assert fields["Crew"].kind == ShapeKind.SCALAR
        assert fields["Armed"].kind == ShapeKind.SCALAR
        assert fields["Hull"].kind == ShapeKind.NESTED
        assert fields["Hull"].type is Component
        assert fields["Extra"].kind == ShapeKind.UNSUPPORTED

    def test_lists(self):
        fields = describe(Design).fields
        assert fields["Parts"].kind == ShapeKind.LIST
        assert fields["Parts"].item.type is Component
        assert fields["Spares"].type is ComponentList
        assert fields["Spares"].item.kind == ShapeKind.NESTED

    def test_numpy_array_is_fixed(self):
        shape = describe(Design).fields["Weights"]
        assert shape.fixed
        assert shape.item.type is np.float32

    def test_pydantic_model(self):
        fields = describe(Station).fields
        assert set(fields) == {"StationId", "Tags"}
        assert fields["Tags"].item.kind == ShapeKind.TEXT

    def test_plain_class_skips_private_names(self):
        assert set(describe(Plain).fields) == {"PlainId"}

    def test_describe_is_cached(self):
        assert describe(Design) is describe(Design)

    def test_optional_scalar(self):
        assert shape_of(Optional[int]).kind == ShapeKind.SCALAR


class TestIdentityField:
    def test_discovered(self):
        assert describe(Design).identity_field() == "DesignId"

    def test_explicit(self):
        assert describe(Design).identity_field("Name") == "Name"

    def test_explicit_unknown(self):
        with pytest.raises(RegistryError, match="no identity field"):
            describe(Design).identity_field("Nope")

    def test_undiscoverable(self):
        with pytest.raises(RegistryError, match="cannot discover"):
            describe(NoIdentity).identity_field()


class TestNew:
    def test_new_fills_lists_and_nested_records(self):
        design = describe(Design).new()
        assert design.Parts == []
        assert design.Hull == Component()

    def test_recursive_nested_type_is_left_unset(self):
        sector = describe(Sector).new()
        assert sector.Neighbour is None
        assert sector.Hub == Station()

    def test_nested_without_default_constructor_is_left_unset(self):
        @dataclass
        class Required:
            RequiredId: int

        @dataclass
        class Holder:
            HolderId: int = 0
            Inner: Optional[Required] = None

        assert describe(Holder).new().Inner is None

    def test_unconstructable(self):
        @dataclass
        class Required:
            RequiredId: int

        with pytest.raises(TypeMismatch, match="cannot construct"):
            describe(Required).new()


class TestCoerceScalar:
    def test_int_rounds_half_to_even(self):
        assert coerce_scalar(2.5, int) == 2
        assert coerce_scalar(3.5, int) == 4

    def test_bool(self):
        assert coerce_scalar("true", bool) is True
        assert coerce_scalar(0.0, bool) is False

    def test_numpy_types(self):
        value = coerce_scalar(7.0, np.int16)
        assert isinstance(value, np.int16)
        assert coerce_scalar(1.5, np.float32) == np.float32(1.5)

    def test_out_of_range(self):
        with pytest.raises(TypeMismatch, match="out of range"):
            coerce_scalar(40000.0, np.int16)

    def test_not_finite(self):
        with pytest.raises(TypeMismatch):
            coerce_scalar(float("nan"), int)


class TestParseEnum:
    def test_by_name(self):
        assert parse_enum(Role, "military") is Role.Military

    def test_by_value(self):
        assert parse_enum(Role, "1") is Role.Military

    def test_unknown(self):
        with pytest.raises(TypeMismatch, match="not a Role"):
            parse_enum(Role, "Pirate")
