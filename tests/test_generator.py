"""Tests for per-version document generation."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Annotated, TypedDict

import pytest
from conftest import make_change, make_document
from pydantic import BaseModel

from epoch.config import SchemaDirection
from epoch.generator import SchemaGenerationError, UnresolvedComponent
from epoch.operations import AddField, RemoveField, RenameField
from epoch.registry import EndpointDefinition, TypeRegistry
from epoch.tags import Tags
from epoch.transformer import MIGRATIONS_EXTENSION
from epoch.type_parser import UnsupportedKind
from epoch.versions import Version

V1 = "2024-01-01"
V2 = "2024-06-01"
V3 = "2025-01-01"


class User(BaseModel):
    id: Annotated[str, Tags(validate="required")]
    full_name: str
    email: str
    phone: str
    status: str


class CreateUser(BaseModel):
    name: Annotated[str, Tags(binding="required")]
    email: str


class UserOut(BaseModel):
    id: str
    name: str
    email: str


class LineItem(BaseModel):
    sku: str
    quantity: int


class Order(BaseModel):
    id: str
    items: list[LineItem]


class GeoPoint(BaseModel):
    lat: float
    lng: float


class PointDict(TypedDict):
    lat: float
    lng: float


class Place(BaseModel):
    name: str
    anchor: GeoPoint
    location: PointDict
    landmarks: list[PointDict]


@dataclass
class TreeNode:
    value: int
    children: list[TreeNode] = field(default_factory=list)


@dataclass
class Author:
    name: str
    books: list[Book] = field(default_factory=list)


@dataclass
class Book:
    title: str
    author: Author | None = None


class Broken(BaseModel):
    id: str
    pair: tuple[int, str]


class Shipment(BaseModel):
    id: str


class Warehouse(BaseModel):
    name: str
    entrance: GeoPoint


def user_base_schema() -> dict:
    return {
        "type": "object",
        "description": "A registered user",
        "properties": {
            "id": {"type": "string", "description": "User identifier", "example": "u_123"},
            "full_name": {"type": "string"},
            "email": {"type": "string", "format": "email"},
            "phone": {"type": "string"},
            "status": {"type": "string", "enum": ["active", "disabled"]},
        },
        "required": ["id", "full_name"],
    }


def user_changes() -> list:
    return [
        make_change(
            V1,
            V2,
            response_operations={User: [RemoveField(name="email"), RemoveField(name="status")]},
        ),
        make_change(
            V2,
            V3,
            response_operations={
                User: [
                    RenameField(from_name="full_name", to_name="name"),
                    RemoveField(name="phone"),
                ]
            },
        ),
    ]


@pytest.fixture
def user_setup(bundle_factory, registry_factory, generator_factory):
    bundle = bundle_factory(V1, V2, V3, changes=user_changes())
    registry = registry_factory(("GET", "/users/{user_id}", None, User))
    document = make_document(
        {
            "User": user_base_schema(),
            "Unmanaged": {
                "type": "object",
                "properties": {
                    "location": {"type": "object", "properties": {"lat": {}, "lng": {}}}
                },
            },
        }
    )
    return generator_factory(bundle, registry), document


def schema_props(document: dict, name: str) -> set[str]:
    return set(document["components"]["schemas"][name]["properties"])


def generated_schemas(generator, version: str) -> dict:
    """Component schemas generated against an empty base document."""
    return generator.generate_spec_for_version(make_document({}), version)["components"]["schemas"]


class TestCumulativeVersions:
    def test_each_version_has_cumulative_changes(self, user_setup):
        generator, document = user_setup
        specs = generator.generate_versioned_specs(document)

        full = {"id", "full_name", "email", "phone", "status"}
        assert schema_props(specs["head"], "User") == full
        assert schema_props(specs[V3], "User") == full
        assert schema_props(specs[V2], "User") == {"id", "name", "email", "status"}
        assert schema_props(specs[V1], "User") == {"id", "name"}

    def test_versions_keyed_head_first(self, user_setup):
        generator, document = user_setup
        assert list(generator.generate_versioned_specs(document)) == ["head", V3, V2, V1]

    def test_required_follows_renames(self, user_setup):
        generator, document = user_setup
        spec = generator.generate_spec_for_version(document, V1)
        assert spec["components"]["schemas"]["User"]["required"] == ["id", "name"]

    def test_authored_metadata_preserved(self, user_setup):
        generator, document = user_setup
        for spec in generator.generate_versioned_specs(document).values():
            user = spec["components"]["schemas"]["User"]
            assert user["description"] == "A registered user"
            assert user["properties"]["id"] == {
                "type": "string",
                "description": "User identifier",
                "example": "u_123",
            }

    def test_unmanaged_schemas_untouched(self, user_setup):
        generator, document = user_setup
        spec = generator.generate_spec_for_version(document, V1)
        unmanaged = document["components"]["schemas"]["Unmanaged"]
        assert spec["components"]["schemas"]["Unmanaged"] == unmanaged

    def test_base_document_not_mutated(self, user_setup):
        generator, document = user_setup
        original = copy.deepcopy(document)
        generator.generate_versioned_specs(document)
        assert document == original

    def test_other_sections_pass_through(self, user_setup):
        generator, document = user_setup
        spec = generator.generate_spec_for_version(document, V1)
        assert spec["paths"] is document["paths"]
        assert spec["info"] is document["info"]
        assert spec["components"]["schemas"] is not document["components"]["schemas"]

    def test_unknown_version(self, user_setup):
        generator, document = user_setup
        with pytest.raises(LookupError):
            generator.generate_spec_for_version(document, "1999-01-01")

    def test_migration_metadata(self, bundle_factory, registry_factory, generator_factory):
        generator = generator_factory(
            bundle_factory(V1, V2, V3, changes=user_changes()),
            registry_factory(("GET", "/users/{user_id}", None, User)),
            include_migration_metadata=True,
        )
        spec = generator.generate_spec_for_version(make_document({"User": user_base_schema()}), V1)
        migrations = spec["components"]["schemas"]["User"][MIGRATIONS_EXTENSION]
        assert [(m["from"], m["to"]) for m in migrations] == [(V2, V3), (V1, V2)]

    def test_output_name_mapper(self, bundle_factory, registry_factory, generator_factory):
        generator = generator_factory(
            bundle_factory(V1, V2, V3, changes=user_changes()),
            registry_factory(("GET", "/users/{user_id}", None, User)),
            output_name_mapper=lambda name: f"api.{name}",
        )
        spec = generator.generate_spec_for_version(
            make_document({"api.User": user_base_schema()}), V1
        )
        schemas = spec["components"]["schemas"]
        assert set(schemas) == {"api.User"}
        assert set(schemas["api.User"]["properties"]) == {"id", "name"}


class TestGeneratedSchemas:
    @pytest.fixture
    def generator(self, bundle_factory, registry_factory, generator_factory):
        changes = [
            make_change(
                V1,
                V2,
                request_operations={CreateUser: [AddField(name="email", default="")]},
                response_operations={UserOut: [RemoveField(name="email")]},
            )
        ]
        return generator_factory(
            bundle_factory(V1, V2, changes=changes),
            registry_factory(("POST", "/users", CreateUser, UserOut)),
        )

    def test_head_uses_bare_names(self, generator):
        spec = generator.generate_spec_for_version(make_document({}), "head")
        schemas = spec["components"]["schemas"]
        assert set(schemas) == {"CreateUser", "UserOut"}
        assert set(schemas["UserOut"]["properties"]) == {"id", "name", "email"}
        assert schemas["CreateUser"]["required"] == ["name"]

    def test_older_versions_use_suffixed_names(self, generator):
        spec = generator.generate_spec_for_version(make_document({}), V1)
        assert set(spec["components"]["schemas"]) == {"CreateUserV20240101", "UserOutV20240101"}

    def test_direction_symmetry(self, generator):
        schemas = generated_schemas(generator, V1)
        assert set(schemas["CreateUserV20240101"]["properties"]) == {"name"}
        assert set(schemas["UserOutV20240101"]["properties"]) == {"id", "name"}

    def test_latest_version_matches_head_shape(self, generator):
        schemas = generated_schemas(generator, V2)
        assert set(schemas["CreateUserV20240601"]["properties"]) == {"name", "email"}

    def test_existing_name_not_overwritten(self, generator):
        authored = {"type": "object", "properties": {"legacy": {"type": "string"}}}
        spec = generator.generate_spec_for_version(
            make_document({"UserOutV20240101": authored}), V1
        )
        assert spec["components"]["schemas"]["UserOutV20240101"] == authored

    def test_schema_cache_returns_copies(self, generator):
        version = Version.parse(V1)
        first = generator.get_schema_for_type(UserOut, version, SchemaDirection.RESPONSE)
        first.properties.clear()
        second = generator.get_schema_for_type(UserOut, version, SchemaDirection.RESPONSE)
        assert set(second.properties) == {"id", "name"}


class TestNaming:
    def test_version_suffix(self, bundle_factory, registry_factory, generator_factory):
        generator = generator_factory(bundle_factory(V1), registry_factory())
        assert generator.get_version_suffix(Version.parse("2024-01-01")) == "V20240101"
        assert generator.get_version_suffix(Version.parse("v1.2.0")) == "V120"
        assert generator.get_version_suffix(Version.head()) == ""

    def test_prefixed_suffix(self, bundle_factory, registry_factory, generator_factory):
        generator = generator_factory(
            bundle_factory(V1),
            registry_factory(("POST", "/users", CreateUser, None)),
            component_name_prefix="Acme",
        )
        spec = generator.generate_spec_for_version(make_document({}), V1)
        assert set(spec["components"]["schemas"]) == {"CreateUserAcmeV20240101"}

    def test_request_registration_takes_precedence(
        self, bundle_factory, registry_factory, generator_factory
    ):
        generator = generator_factory(
            bundle_factory(V1),
            registry_factory(("GET", "/users", None, UserOut), ("PUT", "/users", UserOut, None)),
        )
        assert generator.get_direction_for_type(UserOut) is SchemaDirection.REQUEST
        assert generator.get_direction_for_type(CreateUser) is SchemaDirection.RESPONSE


class TestNestedTypes:
    @pytest.fixture
    def generator(self, bundle_factory, registry_factory, generator_factory):
        changes = [make_change(V1, V2, response_operations={LineItem: [RemoveField(name="sku")]})]
        return generator_factory(
            bundle_factory(V1, V2, changes=changes),
            registry_factory(("GET", "/orders/{order_id}", None, Order)),
        )

    def test_nested_components_discovered(self, generator):
        assert generator.discover_nested_types([Order]) == [LineItem]

    def test_nested_component_shared_under_bare_name(self, generator):
        schemas = generated_schemas(generator, V1)
        assert set(schemas) == {"LineItem", "OrderV20240101"}
        assert schemas["OrderV20240101"]["properties"]["items"] == {
            "type": "array",
            "items": {"$ref": "#/components/schemas/LineItem"},
        }

    def test_nested_component_transformed(self, generator):
        old = generated_schemas(generator, V1)
        head = generated_schemas(generator, "head")
        assert set(old["LineItem"]["properties"]) == {"quantity"}
        assert set(head["LineItem"]["properties"]) == {"sku", "quantity"}

    def test_nested_component_from_base_document(self, generator):
        authored = {
            "type": "object",
            "description": "One order line",
            "properties": {"sku": {"type": "string"}, "quantity": {"type": "integer"}},
        }
        schemas = generator.generate_spec_for_version(make_document({"LineItem": authored}), V1)[
            "components"
        ]["schemas"]
        assert schemas["LineItem"] == {
            "type": "object",
            "description": "One order line",
            "properties": {"quantity": {"type": "integer"}},
        }

    def test_ref_siblings_preserved(self, bundle_factory, registry_factory, generator_factory):
        generator = generator_factory(
            bundle_factory(V1, V2),
            registry_factory(("GET", "/warehouses/{warehouse_id}", None, Warehouse)),
        )
        warehouse = {
            "type": "object",
            "properties": {
                "name": {"type": "string", "default": None},
                "entrance": {
                    "$ref": "#/components/schemas/GeoPoint",
                    "description": "Main entrance",
                },
            },
        }
        geo_point = {
            "type": "object",
            "properties": {
                "lat": {"type": "number", "minimum": -90, "maximum": 90},
                "lng": {"type": "number", "minimum": -180, "maximum": 180},
            },
        }
        document = make_document({"Warehouse": warehouse, "GeoPoint": geo_point})

        for spec in generator.generate_versioned_specs(document).values():
            schemas = spec["components"]["schemas"]
            assert schemas["Warehouse"] == warehouse
            assert schemas["GeoPoint"] == geo_point

    def test_declared_nested_types_included(self, bundle_factory, generator_factory):
        registry = TypeRegistry(
            [
                EndpointDefinition(
                    method="get",
                    path="/shipments",
                    response_type=Shipment,
                    nested_objects={"order": Order},
                )
            ]
        )
        generator = generator_factory(bundle_factory(V1), registry)
        assert generator.discover_nested_types([Shipment]) == [LineItem, Order]

    def test_self_referencing_root(self, bundle_factory, registry_factory, generator_factory):
        generator = generator_factory(
            bundle_factory(V1), registry_factory(("GET", "/tree", None, TreeNode))
        )
        for spec in generator.generate_versioned_specs(make_document({})).values():
            schemas = spec["components"]["schemas"]
            assert list(schemas) == ["TreeNode"]
            assert schemas["TreeNode"]["properties"]["children"]["items"] == {
                "$ref": "#/components/schemas/TreeNode"
            }

    def test_mutually_referencing_types(self, bundle_factory, registry_factory, generator_factory):
        generator = generator_factory(
            bundle_factory(V1), registry_factory(("GET", "/authors", None, Author))
        )
        schemas = generated_schemas(generator, V1)
        assert sorted(schemas) == ["Author", "Book"]


class TestComponentRefSubstitution:
    @pytest.fixture
    def generator(self, bundle_factory, registry_factory, generator_factory):
        return generator_factory(
            bundle_factory(V1), registry_factory(("GET", "/places", None, Place))
        )

    def test_inline_shapes_replaced_by_refs(self, generator):
        schemas = generator.generate_spec_for_version(make_document({}), "head")["components"][
            "schemas"
        ]
        place = schemas["Place"]["properties"]
        assert place["anchor"] == {"$ref": "#/components/schemas/GeoPoint"}
        assert place["location"] == {"$ref": "#/components/schemas/GeoPoint"}
        assert place["landmarks"] == {
            "type": "array",
            "items": {"$ref": "#/components/schemas/GeoPoint"},
        }

    def test_ambiguous_shapes_left_inline(self, generator):
        coordinates = {
            "type": "object",
            "properties": {"lat": {"type": "number"}, "lng": {"type": "number"}},
        }
        schemas = generator.generate_spec_for_version(
            make_document({"Coordinates": coordinates}), "head"
        )["components"]["schemas"]
        assert "$ref" not in schemas["Place"]["properties"]["location"]
        assert schemas["Coordinates"] == coordinates

    def test_unmanaged_schemas_not_rewritten(self, generator):
        legacy = {
            "type": "object",
            "properties": {
                "where": {"type": "object", "properties": {"lat": {}, "lng": {}}},
            },
        }
        schemas = generator.generate_spec_for_version(make_document({"Legacy": legacy}), "head")[
            "components"
        ]["schemas"]
        assert schemas["Legacy"] == legacy


class TestErrors:
    def test_parse_error_is_wrapped(self, bundle_factory, registry_factory, generator_factory):
        generator = generator_factory(
            bundle_factory(V1), registry_factory(("GET", "/broken", None, Broken))
        )
        with pytest.raises(SchemaGenerationError) as exc_info:
            generator.generate_spec_for_version(make_document({}), V1)
        assert exc_info.value.type_name == "Broken"
        assert exc_info.value.version == V1
        assert isinstance(exc_info.value.__cause__, UnsupportedKind)

    def test_unresolved_component(self, bundle_factory, registry_factory, generator_factory):
        generator = generator_factory(
            bundle_factory(V1), registry_factory(("GET", "/shipments", None, Shipment))
        )
        document = make_document(
            {
                "Shipment": {
                    "type": "object",
                    "properties": {"destination": {"$ref": "#/components/schemas/Missing"}},
                }
            }
        )
        with pytest.raises(SchemaGenerationError) as exc_info:
            generator.generate_spec_for_version(document, "head")
        assert isinstance(exc_info.value.__cause__, UnresolvedComponent)

    def test_non_struct_roots_skipped(self, bundle_factory, registry_factory, generator_factory):
        generator = generator_factory(
            bundle_factory(V1), registry_factory(("GET", "/names", None, list[str]))
        )
        spec = generator.generate_spec_for_version(make_document({}), V1)
        assert spec["components"]["schemas"] == {}
