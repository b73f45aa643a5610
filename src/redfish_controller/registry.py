"""Attribute registry retrieval, type lookup, coercion and value checks.

Registries are device-supplied schemas (BiosAttributeRegistry,
ManagerAttributeRegistry, NetworkAttributesRegistry_<fqdd>) listing every
configurable attribute with its declared type and constraints. Desired
values are coerced to the declared type before diffing so that "010" and
10 compare equal for an Integer attribute, and a value that does not parse
is rejected instead of being compared as a raw string.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from .config import MAX_REGISTRY_ATTRIBUTES
from .errors import (
    ConstraintViolation,
    RegistryFetchError,
    RegistryNotFound,
    TypeCoercionError,
    UnknownAttribute,
)
from .redfish_client import REGISTRIES_COLLECTION, RedfishClient, RedfishError, odata_id

logger = logging.getLogger(__name__)

AttributeType = Literal["int", "string"]

# Registry "Type" -> coercion type
_DECLARED_TYPES: dict[str, AttributeType] = {
    "Integer": "int",
    "Enumeration": "string",
    "String": "string",
    "Password": "string",
}


class RegistryValue(BaseModel):
    """One allowed value of an Enumeration attribute."""

    model_config = {"extra": "ignore"}

    value_name: str = Field("", alias="ValueName")
    value_display_name: str = Field("", alias="ValueDisplayName")


class RegistryAttribute(BaseModel):
    """One entry of RegistryEntries.Attributes."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    attribute_name: str = Field(alias="AttributeName")
    id: str = Field("", validation_alias=AliasChoices("Id", "ID"))
    type: str = Field(alias="Type")
    read_only: bool = Field(False, validation_alias=AliasChoices("ReadOnly", "Readonly"))
    write_only: bool = Field(False, validation_alias=AliasChoices("WriteOnly", "Writeonly"))
    min_length: int | None = Field(None, alias="MinLength")
    max_length: int | None = Field(None, alias="MaxLength")
    lower_bound: int | None = Field(None, alias="LowerBound")
    upper_bound: int | None = Field(None, alias="UpperBound")
    values: list[RegistryValue] = Field(default_factory=list, alias="Value")

    @property
    def allowed_values(self) -> list[str]:
        names: list[str] = []
        for value in self.values:
            for candidate in (value.value_display_name, value.value_name):
                if candidate and candidate not in names:
                    names.append(candidate)
        return names


class AttributeRegistry:
    """Read-only view of a fetched registry, indexed by attribute name."""

    def __init__(self, name: str, attributes: list[RegistryAttribute]) -> None:
        self._name = name
        self._attributes = {attr.attribute_name: attr for attr in attributes}

    @property
    def name(self) -> str:
        return self._name

    @property
    def attributes(self) -> list[RegistryAttribute]:
        return sorted(self._attributes.values(), key=lambda attr: attr.attribute_name)

    def __contains__(self, attribute: object) -> bool:
        return attribute in self._attributes

    def __len__(self) -> int:
        return len(self._attributes)

    def get(self, attribute: str) -> RegistryAttribute:
        try:
            return self._attributes[attribute]
        except KeyError as e:
            raise UnknownAttribute(attribute, self._name) from e

    @classmethod
    def from_document(cls, name: str, document: dict[str, Any]) -> AttributeRegistry:
        """Parse a registry document (RegistryEntries.Attributes)."""
        entries = (document.get("RegistryEntries") or {}).get("Attributes")
        if not isinstance(entries, list):
            raise RegistryFetchError(f"Registry {name} has no RegistryEntries.Attributes list")

        # SECURITY: Bound the number of parsed entries
        if len(entries) > MAX_REGISTRY_ATTRIBUTES:
            raise RegistryFetchError(
                f"Registry {name} declares {len(entries)} attributes, "
                f"exceeding the limit of {MAX_REGISTRY_ATTRIBUTES}"
            )

        try:
            attributes = [RegistryAttribute.model_validate(entry) for entry in entries]
        except ValidationError as e:
            raise RegistryFetchError(f"Registry {name} has a malformed entry: {e}") from e
        return cls(name, attributes)


# =============================================================================
# Type lookup, coercion and checks
# =============================================================================


def get_type(registry: AttributeRegistry, attribute: str) -> AttributeType:
    """Return the coercion type of an attribute.

    Raises:
        UnknownAttribute: If the registry does not declare the attribute.
        TypeCoercionError: If the declared registry type is not Integer,
            Enumeration, String or Password.
    """
    entry = registry.get(attribute)
    declared = _DECLARED_TYPES.get(entry.type)
    if declared is None:
        raise TypeCoercionError(attribute, entry.type, "Integer, Enumeration, String or Password")
    return declared


def coerce(registry: AttributeRegistry, attribute: str, value: Any) -> Any:
    """Convert a value to the attribute's declared type.

    Integer attributes accept ints, integral floats and decimal strings.
    Booleans are rejected for Integer attributes. String attributes pass
    through unchanged.
    """
    if get_type(registry, attribute) == "string":
        return value

    if isinstance(value, bool):
        raise TypeCoercionError(attribute, value, "int")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise TypeCoercionError(attribute, value, "int")
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError as e:
            raise TypeCoercionError(attribute, value, "int") from e
    raise TypeCoercionError(attribute, value, "int")


def check_value(registry: AttributeRegistry, attribute: str, value: Any) -> None:
    """Validate a coerced value against the registry constraints.

    Raises:
        ConstraintViolation: If the attribute is read-only or the value falls
            outside the declared enumeration, length or bounds.
    """
    entry = registry.get(attribute)
    declared = get_type(registry, attribute)

    if entry.read_only:
        raise ConstraintViolation(
            attribute, f"Attribute {attribute} cannot be written as it is read only"
        )

    if declared == "int":
        if entry.lower_bound is not None and value < entry.lower_bound:
            raise ConstraintViolation(
                attribute,
                f"Attribute {attribute} value {value} is below the lower bound {entry.lower_bound}",
            )
        if entry.upper_bound is not None and value > entry.upper_bound:
            raise ConstraintViolation(
                attribute,
                f"Attribute {attribute} value {value} is above the upper bound {entry.upper_bound}",
            )
        return

    if not isinstance(value, str):
        raise ConstraintViolation(
            attribute,
            f"Attribute {attribute} is declared {entry.type} but value {value!r} is not a string",
        )

    if entry.type == "Enumeration":
        allowed = entry.allowed_values
        if allowed and value not in allowed:
            raise ConstraintViolation(
                attribute,
                f"Attribute {attribute} value {value!r} is not permitted. "
                f"Allowed values: {', '.join(allowed)}",
            )
        return

    if entry.min_length is not None and len(value) < entry.min_length:
        raise ConstraintViolation(
            attribute,
            f"Attribute {attribute} length {len(value)} is shorter than {entry.min_length}",
        )
    if entry.max_length is not None and len(value) > entry.max_length:
        raise ConstraintViolation(
            attribute,
            f"Attribute {attribute} length {len(value)} is longer than {entry.max_length}",
        )


# =============================================================================
# Fetching
# =============================================================================


def exact_name(registry_name: str) -> Callable[[str], bool]:
    """Match a registry member whose Id equals the name, ignoring a version suffix.

    BIOS resources name their registry with a version ("BiosAttributeRegistry.v1_0_3")
    while the collection member is usually unversioned.
    """
    base = registry_name.split(".")[0]
    return lambda member_id: member_id in (registry_name, base)


class RegistryClient:
    """Fetches registries from one endpoint.

    One instance is used per reconciliation call; fetched registries are
    cached on the instance so repeated lookups within a call see the same data.
    """

    def __init__(self, client: RedfishClient) -> None:
        self._client = client
        self._cache: dict[str, AttributeRegistry] = {}

    async def fetch(self, registry_name: str) -> AttributeRegistry:
        """Fetch a registry by name.

        Raises:
            RegistryNotFound: If no registry collection member matches.
            RegistryFetchError: On transport failure or malformed documents.
        """
        return await self.fetch_matching(exact_name(registry_name), registry_name)

    async def fetch_matching(
        self, predicate: Callable[[str], bool], description: str
    ) -> AttributeRegistry:
        if description in self._cache:
            return self._cache[description]

        try:
            collection = await self._client.get(REGISTRIES_COLLECTION)
            member_id = ""
            member_uri = ""
            for member in collection.get("Members", []):
                uri = odata_id(member)
                candidate = uri.rstrip("/").rsplit("/", 1)[-1]
                if candidate and predicate(candidate):
                    member_id, member_uri = candidate, uri
                    break

            if not member_uri:
                raise RegistryNotFound(description)

            file_document = await self._client.get(member_uri)
            locations = file_document.get("Location") or []
            location = locations[0].get("Uri", "") if locations else ""
            if not location:
                raise RegistryFetchError(f"Registry {member_id} has no Location URI")

            document = await self._client.get(location)
        except RedfishError as e:
            raise RegistryFetchError(f"Failed to fetch registry {description}: {e}") from e

        registry = AttributeRegistry.from_document(member_id, document)
        self._cache[description] = registry
        logger.info(
            "Fetched attribute registry",
            extra={"registry": member_id, "attributes": len(registry)},
        )
        return registry
