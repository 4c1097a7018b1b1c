"""Convert schema nodes into runtime validators.

The same node that a tool manifest returns to the agent is converted here
into a pydantic-backed validator, so the documented contract and the
enforced one are always derived from one definition.

Example:
    ```python
    validator = convert({
        "type": "object",
        "required": ["a"],
        "properties": {"a": {"type": "string"}, "b": {"type": "integer", "default": 5}},
    })
    validator.validate({"a": "x"})  # {"a": "x", "b": 5}
    ```
"""

import copy
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainValidator,
    Strict,
    StrictBool,
    StringConstraints,
    TypeAdapter,
    ValidationError,
    create_model,
    model_validator,
)
from pydantic_core import InitErrorDetails

from m365_mcp.errors import InputValidationError
from m365_mcp.schema.nodes import (
    AnyNode,
    ArrayNode,
    BooleanNode,
    NumberNode,
    ObjectNode,
    SchemaNode,
    StringNode,
    parse_schema,
)

DATE_TIME_PATTERN = r"^\S+$"


class _Omitted:
    """Marks an optional property that was not supplied."""

    def __repr__(self) -> str:
        return "<omitted>"

    def __copy__(self) -> "_Omitted":
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> "_Omitted":
        return self


OMITTED = _Omitted()
_NO_DEFAULT = object()


class Validator:
    """Runtime validator/normalizer built from a schema node.

    Attributes:
        annotation: pydantic-compatible type enforcing the node.
        description: Node description, if any.
    """

    def __init__(
        self,
        annotation: Any,
        description: str | None = None,
        default: Any = _NO_DEFAULT,
    ) -> None:
        self.annotation = annotation
        self.description = description
        self._default = default
        self._adapter: TypeAdapter[Any] | None = None

    @property
    def has_default(self) -> bool:
        return self._default is not _NO_DEFAULT

    @property
    def default(self) -> Any:
        """A fresh copy of the declared default (``None`` when absent)."""
        if not self.has_default:
            return None
        return copy.deepcopy(self._default)

    @property
    def adapter(self) -> TypeAdapter[Any]:
        if self._adapter is None:
            self._adapter = TypeAdapter(self.annotation)
        return self._adapter

    def field_info(self, alias: str, required: bool) -> Any:
        """Build the pydantic ``Field`` used when this node is an object property."""
        if self.has_default:
            default = self._default
        elif required:
            default = ...
        else:
            default = OMITTED
        return Field(default=default, alias=alias, description=self.description)

    def validate(self, value: Any) -> Any:
        """Validate and normalize a value.

        ``None`` is replaced by the declared default when there is one.

        Raises:
            InputValidationError: If the value does not satisfy the schema.
        """
        if value is None and self.has_default:
            value = self.default
        try:
            result = self.adapter.validate_python(value)
        except ValidationError as e:
            raise InputValidationError(
                _format_errors(e), errors=e.errors(include_url=False)
            ) from e
        return to_plain(result)

    def is_valid(self, value: Any) -> bool:
        try:
            self.validate(value)
        except InputValidationError:
            return False
        return True


def to_plain(value: Any) -> Any:
    """Turn validated output (dynamic models included) into plain dicts and lists.

    Optional properties that were not supplied are left out.
    """
    if isinstance(value, BaseModel):
        plain: dict[str, Any] = {}
        for name, info in type(value).model_fields.items():
            item = getattr(value, name)
            if isinstance(item, _Omitted):
                continue
            plain[info.alias or name] = to_plain(item)
        for key, item in (value.model_extra or {}).items():
            plain[key] = to_plain(item)
        return plain
    if isinstance(value, dict):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


def _format_errors(error: ValidationError) -> str:
    parts = []
    for entry in error.errors(include_url=False):
        location = ".".join(str(part) for part in entry["loc"]) or "<root>"
        parts.append(f"{location}: {entry['msg']}")
    return "Invalid tool input: " + "; ".join(parts)


def _line_errors(error: ValidationError) -> list[InitErrorDetails]:
    details: list[InitErrorDetails] = []
    for entry in error.errors(include_url=False):
        detail: dict[str, Any] = {
            "type": entry["type"],
            "loc": entry["loc"],
            "input": entry["input"],
        }
        if "ctx" in entry:
            detail["ctx"] = entry["ctx"]
        details.append(detail)  # type: ignore[arg-type]
    return details


def _violation(name: str, message: str, data: Any) -> InitErrorDetails:
    return {
        "type": "value_error",
        "loc": (),
        "input": data,
        "ctx": {"error": ValueError(f"{name}: {message}")},
    }


@dataclass
class _ObjectRules:
    declared: set[str] = field(default_factory=set)
    defaulted: set[str] = field(default_factory=set)
    extra_adapter: TypeAdapter[Any] | None = None
    min_properties: int | None = None
    max_properties: int | None = None

    @property
    def needed(self) -> bool:
        return (
            self.extra_adapter is not None
            or self.min_properties is not None
            or self.max_properties is not None
        )


def _property_count(model: BaseModel) -> int:
    """Number of properties the validated object holds, defaults included."""
    present = sum(
        1 for name in type(model).model_fields if not isinstance(getattr(model, name), _Omitted)
    )
    return present + len(model.model_extra or {})


def _count_violations(rules: _ObjectRules, count: int, data: Any) -> list[InitErrorDetails]:
    violations: list[InitErrorDetails] = []
    if rules.min_properties is not None and count < rules.min_properties:
        violations.append(
            _violation(
                "minProperties", f"Expected at least {rules.min_properties} properties", data
            )
        )
    if rules.max_properties is not None and count > rules.max_properties:
        violations.append(
            _violation(
                "maxProperties", f"Expected at most {rules.max_properties} properties", data
            )
        )
    return violations


def _object_rules_validator(rules: _ObjectRules) -> Any:
    """Wrap validator adding catch-all and property-count checks to an object model.

    Violations are collected next to the regular field errors rather than
    aborting validation on the first one. Property counts are taken on the
    validated object, after defaults are filled in.
    """

    def check_object_rules(cls: type[BaseModel], data: Any, handler: Any) -> Any:
        if not isinstance(data, dict):
            return handler(data)

        violations: list[InitErrorDetails] = []
        payload = data
        if rules.extra_adapter is not None:
            declared = {k: v for k, v in data.items() if k in rules.declared}
            extras = {k: v for k, v in data.items() if k not in rules.declared}
            try:
                extras = rules.extra_adapter.validate_python(extras)
            except ValidationError as e:
                violations.extend(_line_errors(e))
            payload = {**declared, **extras}

        try:
            model = handler(payload)
        except ValidationError as e:
            # No parsed object; count what it would hold once defaults apply.
            count = len(set(data) | rules.defaulted)
            raise ValidationError.from_exception_data(
                cls.__name__, _line_errors(e) + violations + _count_violations(rules, count, data)
            ) from None

        violations.extend(_count_violations(rules, _property_count(model), data))
        if violations:
            raise ValidationError.from_exception_data(cls.__name__, violations)
        return model

    return model_validator(mode="wrap")(check_object_rules)


def _with_description(annotation: Any, node: SchemaNode) -> Any:
    if node.description:
        return Annotated[annotation, Field(description=node.description)]
    return annotation


def _json_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if value is None:
        return "null"
    return type(value).__name__


def _enum_member_checker(values: list[Any]) -> Any:
    """Match enum members by JSON kind and value, so ``True`` never matches ``1``."""

    def check_member(value: Any) -> Any:
        kind = _json_kind(value)
        for member in values:
            if _json_kind(member) == kind and member == value:
                return member
        raise ValueError(f"Input should be one of {values!r}")

    return check_member


def _convert_enum(node: SchemaNode) -> Any | None:
    values = node.enum
    if not values:
        return None
    if all(isinstance(value, str) for value in values):
        return Literal[tuple(values)]  # type: ignore[valid-type]
    literals = tuple(Literal[value] for value in values)  # type: ignore[valid-type]
    union = literals[0] if len(literals) == 1 else Union[literals]  # type: ignore[valid-type]
    return Annotated[union, PlainValidator(_enum_member_checker(values))]


def _convert_string(node: StringNode) -> Any:
    constraints: dict[str, Any] = {"strict": True}
    if node.format == "date-time":
        constraints["pattern"] = DATE_TIME_PATTERN
    if node.min_length is not None:
        constraints["min_length"] = node.min_length
    if node.max_length is not None:
        constraints["max_length"] = node.max_length
    return Annotated[str, StringConstraints(**constraints)]


def _convert_number(node: NumberNode) -> Any:
    bounds: dict[str, Any] = {}
    if node.minimum is not None:
        bounds["ge"] = node.minimum
    if node.maximum is not None:
        bounds["le"] = node.maximum
    base = int if node.type == "integer" else float
    return Annotated[base, Strict(), Field(**bounds)]


def _convert_array(node: ArrayNode, name: str) -> Any:
    item_node = node.item_node
    item_annotation = convert(item_node, f"{name}Item").annotation if item_node else Any
    bounds: dict[str, Any] = {}
    if node.min_items is not None:
        bounds["min_length"] = node.min_items
    if node.max_items is not None:
        bounds["max_length"] = node.max_items
    return Annotated[list[item_annotation], Field(**bounds)]  # type: ignore[valid-type]


def _convert_object(node: ObjectNode, name: str) -> Any:
    required = set(node.required)
    fields: dict[str, Any] = {}
    rules = _ObjectRules(
        declared=set(node.properties),
        min_properties=node.min_properties,
        max_properties=node.max_properties,
    )

    # Python-side names are positional so property names never clash with
    # BaseModel attributes or keywords; the schema name is kept as the alias.
    for index, (prop_name, prop_node) in enumerate(node.properties.items()):
        prop_validator = convert(prop_node, f"{name}_{prop_name}")
        if prop_validator.has_default:
            rules.defaulted.add(prop_name)
        fields[f"field_{index}"] = (
            prop_validator.annotation,
            prop_validator.field_info(prop_name, prop_name in required),
        )

    extra = "forbid"
    if node.additional_properties is True:
        extra = "allow"
    elif isinstance(node.additional_properties, BaseModel):
        extra = "allow"
        extra_annotation = convert(node.additional_properties, f"{name}Extra").annotation
        rules.extra_adapter = TypeAdapter(dict[str, extra_annotation])  # type: ignore[valid-type]

    validators = {}
    if rules.needed:
        validators["check_object_rules"] = _object_rules_validator(rules)

    return create_model(  # type: ignore[call-overload]
        name,
        __config__=ConfigDict(extra=extra),
        __validators__=validators,
        **fields,
    )


def convert(schema: "SchemaNode | dict[str, Any] | None", name: str = "ToolInput") -> Validator:
    """Convert a schema node (or its JSON form) into a ``Validator``.

    Args:
        schema: Schema node or dictionary. ``None`` yields an accept-anything validator.
        name: Model name used for object nodes (appears in error titles).

    Returns:
        Validator carrying the node's description and default.
    """
    if schema is None:
        return Validator(Any)

    node = parse_schema(schema)
    default = node.default if node.has_default else _NO_DEFAULT

    annotation = _convert_enum(node)
    if annotation is None:
        if isinstance(node, StringNode):
            annotation = _convert_string(node)
        elif isinstance(node, NumberNode):
            annotation = _convert_number(node)
        elif isinstance(node, BooleanNode):
            annotation = StrictBool
        elif isinstance(node, ArrayNode):
            annotation = _convert_array(node, name)
        elif isinstance(node, ObjectNode):
            annotation = _convert_object(node, name)
        else:
            assert isinstance(node, AnyNode)
            annotation = Any

    return Validator(
        _with_description(annotation, node),
        description=node.description,
        default=default,
    )
