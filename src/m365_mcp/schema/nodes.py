"""Schema node models for tool input descriptions.

Tool manifests describe their inputs with a small JSON-Schema subset. These
models parse such a description into a tagged union discriminated on
``type`` so the converter can dispatch on node kind instead of probing
dictionaries.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    Tag,
    TypeAdapter,
    ValidationError,
)

from m365_mcp.errors import InputValidationError

_KNOWN_KINDS = {"string", "number", "integer", "boolean", "array", "object"}

# Enum members are JSON scalars only.
EnumValue = Union[StrictStr, StrictBool, StrictInt, StrictFloat, None]


class _BaseNode(BaseModel):
    """Fields shared by every node kind."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    enum: list[EnumValue] | None = None
    description: str | None = None
    default: Any = None

    @property
    def has_default(self) -> bool:
        """True if the schema declared ``default`` explicitly (``null`` included)."""
        return "default" in self.model_fields_set

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the JSON form the node was parsed from."""
        return self.model_dump(by_alias=True, exclude_unset=True)


class AnyNode(_BaseNode):
    """Node without a recognised ``type``; accepts any value."""

    type: str | None = None


class StringNode(_BaseNode):
    type: Literal["string"] = "string"
    format: str | None = None
    min_length: int | None = Field(default=None, alias="minLength")
    max_length: int | None = Field(default=None, alias="maxLength")


class NumberNode(_BaseNode):
    """``number`` or ``integer`` node."""

    type: Literal["number", "integer"] = "number"
    minimum: float | None = None
    maximum: float | None = None


class BooleanNode(_BaseNode):
    type: Literal["boolean"] = "boolean"


class ArrayNode(_BaseNode):
    type: Literal["array"] = "array"
    items: Union["SchemaNode", list["SchemaNode"], None] = None
    min_items: int | None = Field(default=None, alias="minItems")
    max_items: int | None = Field(default=None, alias="maxItems")

    @property
    def item_node(self) -> "SchemaNode | None":
        """Element schema; tuple-style ``items`` lists use their first entry."""
        if isinstance(self.items, list):
            return self.items[0] if self.items else None
        return self.items


class ObjectNode(_BaseNode):
    type: Literal["object"] = "object"
    properties: dict[str, "SchemaNode"] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)
    additional_properties: Union[bool, "SchemaNode", None] = Field(
        default=None, alias="additionalProperties"
    )
    min_properties: int | None = Field(default=None, alias="minProperties")
    max_properties: int | None = Field(default=None, alias="maxProperties")


def _node_kind(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    if kind == "integer":
        return "number"
    return kind if kind in _KNOWN_KINDS else "any"


SchemaNode = Annotated[
    Union[
        Annotated[StringNode, Tag("string")],
        Annotated[NumberNode, Tag("number")],
        Annotated[BooleanNode, Tag("boolean")],
        Annotated[ArrayNode, Tag("array")],
        Annotated[ObjectNode, Tag("object")],
        Annotated[AnyNode, Tag("any")],
    ],
    Discriminator(_node_kind),
]

ArrayNode.model_rebuild()
ObjectNode.model_rebuild()

_schema_node_adapter: TypeAdapter[Any] = TypeAdapter(SchemaNode)


def parse_schema(schema: "SchemaNode | dict[str, Any]") -> "SchemaNode":
    """Parse a JSON schema dictionary into a node tree.

    Already-parsed nodes are returned unchanged.

    Raises:
        InputValidationError: If the schema is malformed (for example an enum
            member that is not a JSON scalar).
    """
    if isinstance(schema, _BaseNode):
        return schema
    try:
        return _schema_node_adapter.validate_python(schema)
    except ValidationError as e:
        raise InputValidationError(
            f"Invalid tool input schema: {e}", errors=e.errors(include_url=False)
        ) from e
