"""Directory service auth provider reconciliation.

The AccountService carries one sub-document per provider (ActiveDirectory,
LDAP). Settings Redfish does not model (schema selection, SSO, DC lookup,
timeouts) are iDRAC attributes that accompany the AccountService change.
Only one provider may change per call.
"""

from __future__ import annotations

import logging
from typing import Any

from .config import MAX_AUTH_TIMEOUT_SECONDS, MIN_AUTH_TIMEOUT_SECONDS
from .diff import attribute_diff, select, structural_diff
from .errors import UnsupportedApplyTime, ValidationRuleViolation
from .handlers import CurrentState, ResourceHandler, Submission
from .manager_attributes import (
    MANAGER_ATTRIBUTE_REGISTRY,
    check_group_membership,
    find_attribute_resource,
)
from .models import ActiveDirectoryConfig, DirectoryServiceSpec, LDAPConfig
from .payload import OPERATION_APPLY_TIME_KEY, ApplyTimePolicy, build
from .redfish_client import ACCOUNT_SERVICE, RedfishClient
from .registry import RegistryClient, check_value

logger = logging.getLogger(__name__)

ENABLED = "Enabled"
DISABLED = "Disabled"
EXTENDED_SCHEMA = "Extended Schema"
STANDARD_SCHEMA = "Standard Schema"

ACTIVE_DIRECTORY_PREFIX = "ActiveDirectory."
AD_GROUP_PREFIX = "ADGroup."
TWO_FACTOR_PREFIX = "RSASecurID2FA."
TWO_FACTOR_FIELDS = ("RSASecurIDAccessKey", "RSASecurIDClientID", "RSASecurIDAuthenticationServer")
GLOBAL_CATALOGS = ("GlobalCatalog1", "GlobalCatalog2", "GlobalCatalog3")


class _Attributes:
    """Lookup of iDRAC attributes by group prefix and name suffix.

    Names carry an instance index ("ActiveDirectory.1.AuthTimeout"), so
    entries are matched on prefix and suffix rather than by exact name.
    """

    def __init__(self, attributes: dict[str, Any]) -> None:
        self._attributes = attributes

    def has(self, suffix: str, prefix: str = ACTIVE_DIRECTORY_PREFIX) -> bool:
        return any(
            name.startswith(prefix) and name.endswith(suffix) for name in self._attributes
        )

    def value(self, suffix: str, prefix: str = ACTIVE_DIRECTORY_PREFIX) -> str:
        for name, value in self._attributes.items():
            if name.startswith(prefix) and name.endswith(suffix):
                return "" if value is None else str(value)
        return ""


def _violation(detail: str) -> ValidationRuleViolation:
    return ValidationRuleViolation("directory_service", detail)


def check_two_factor(attrs: _Attributes) -> None:
    if any(attrs.has(field, TWO_FACTOR_PREFIX) for field in TWO_FACTOR_FIELDS):
        if not all(attrs.value(field, TWO_FACTOR_PREFIX) for field in TWO_FACTOR_FIELDS):
            raise _violation(
                "RSASecurIDAccessKey, RSASecurIDClientID and "
                "RSASecurIDAuthenticationServer must all be configured for two factor authentication"
            )


def check_auth_timeout(attrs: _Attributes) -> None:
    if not attrs.has("AuthTimeout"):
        return
    try:
        timeout = int(attrs.value("AuthTimeout"))
    except ValueError as e:
        raise _violation("AuthTimeout must be an integer") from e
    if not MIN_AUTH_TIMEOUT_SECONDS <= timeout <= MAX_AUTH_TIMEOUT_SECONDS:
        raise _violation(
            f"AuthTimeout must be between {MIN_AUTH_TIMEOUT_SECONDS} and {MAX_AUTH_TIMEOUT_SECONDS}"
        )


def check_single_sign_on(config: ActiveDirectoryConfig, attrs: _Attributes) -> None:
    if attrs.value("SSOEnable") != ENABLED:
        return
    if not config.service_enabled:
        raise _violation("SSO can't be enabled when the Active Directory service is disabled")
    if not config.kerberos_keytab:
        raise _violation("a Kerberos keytab is required when SSO is enabled")


def check_schema(config: ActiveDirectoryConfig, attrs: _Attributes) -> None:
    schema = attrs.value("Schema")
    global_catalogs = [name for name in GLOBAL_CATALOGS if attrs.has(name)]

    if schema == EXTENDED_SCHEMA:
        if not attrs.value("RacName") or not attrs.value("RacDomain"):
            raise _violation("RacName and RacDomain must be configured for Extended Schema")
        if attrs.has("GCLookupEnable") or global_catalogs:
            raise _violation(
                "GCLookupEnable and GlobalCatalog1-3 can not be configured for Extended Schema"
            )
        if config.remote_role_mapping:
            raise _violation("RemoteRoleMapping can not be configured for Extended Schema")
        if attrs.has("Domain", AD_GROUP_PREFIX):
            raise _violation("Domain can not be configured for Extended Schema")

    elif schema == STANDARD_SCHEMA:
        if attrs.has("RacName") or attrs.has("RacDomain"):
            raise _violation("RacName and RacDomain can not be configured for Standard Schema")
        if not attrs.has("GCLookupEnable"):
            raise _violation("GCLookupEnable must be configured for Standard Schema")
        lookup = attrs.value("GCLookupEnable")
        if lookup == ENABLED:
            if not attrs.value("GCRootDomain"):
                raise _violation("GCRootDomain must be configured for Enabled GCLookupEnable")
            if global_catalogs:
                raise _violation("GlobalCatalog can not be configured for Enabled GCLookupEnable")
        elif lookup == DISABLED:
            if not any(attrs.value(name) for name in GLOBAL_CATALOGS):
                raise _violation(
                    "at least one of GlobalCatalog1-3 must be configured for Disabled GCLookupEnable"
                )
            if attrs.has("GCRootDomain"):
                raise _violation("GCRootDomain can not be configured for Disabled GCLookupEnable")
        else:
            raise _violation(f"invalid GCLookupEnable value '{lookup}' for Standard Schema")


def check_dc_lookup(config: ActiveDirectoryConfig, attrs: _Attributes) -> None:
    if not attrs.has("DCLookupEnable"):
        return
    lookup = attrs.value("DCLookupEnable")
    addresses = config.service_addresses or []

    if lookup == DISABLED:
        if not addresses:
            raise _violation("at least one service address is required for Disabled DCLookup")
        if attrs.has("DCLookupByUserDomain") or attrs.has("DCLookupDomainName"):
            raise _violation(
                "DCLookupByUserDomain and DCLookupDomainName can not be configured for Disabled DCLookup"
            )
    elif lookup == ENABLED:
        if addresses:
            raise _violation("service addresses can not be configured for Enabled DCLookup")
        if not attrs.has("DCLookupByUserDomain"):
            raise _violation("DCLookupByUserDomain must be configured for Enabled DCLookup")
        by_user_domain = attrs.value("DCLookupByUserDomain")
        if by_user_domain == DISABLED and not attrs.value("DCLookupDomainName"):
            raise _violation(
                "DCLookupDomainName must be configured for Disabled DCLookupByUserDomain"
            )
        if by_user_domain == ENABLED and attrs.has("DCLookupDomainName"):
            raise _violation(
                "DCLookupDomainName can not be configured for Enabled DCLookupByUserDomain"
            )
    else:
        raise _violation(f"invalid DCLookupEnable value '{lookup}'")


def check_active_directory(config: ActiveDirectoryConfig) -> None:
    attrs = _Attributes(config.attributes)
    check_two_factor(attrs)
    check_auth_timeout(attrs)
    check_single_sign_on(config, attrs)
    check_schema(config, attrs)
    check_dc_lookup(config, attrs)


def check_ldap(config: LDAPConfig) -> None:
    check_two_factor(_Attributes(config.attributes))
    if not config.service_enabled:
        return
    if not config.service_addresses:
        raise _violation("LDAP requires at least one service address when enabled")
    search = config.search_settings
    if search is None or not search.base_distinguished_names:
        raise _violation("LDAP requires a base distinguished name when enabled")


class DirectoryServiceHandler(ResourceHandler[DirectoryServiceSpec]):
    """AccountService.ActiveDirectory / AccountService.LDAP plus iDRAC attributes."""

    group = "directory_service"
    resets_host = False
    default_policy = ApplyTimePolicy.IMMEDIATE

    async def read(self, client: RedfishClient, registries: RegistryClient) -> CurrentState:
        account = await client.get(ACCOUNT_SERVICE)
        variants = self.spec.variants()

        attributes: dict[str, Any] = {
            variant.type: select(account.get(variant.type) or {}, variant.to_redfish())
            for variant in variants
        }
        context: dict[str, Any] = {"account": account, "idrac_attributes": {}}
        registry = None

        if any(variant.attributes for variant in variants):
            idrac_uri = await find_attribute_resource(client, "iDRAC")
            idrac = await client.get(idrac_uri)
            registry = await registries.fetch(MANAGER_ATTRIBUTE_REGISTRY)
            idrac_attributes = dict(idrac.get("Attributes") or {})
            context["idrac_uri"] = idrac_uri
            context["idrac_attributes"] = idrac_attributes
            names = {name for variant in variants for name in variant.attributes}
            attributes["attributes"] = {
                name: idrac_attributes.get(name) for name in sorted(names)
            }

        return CurrentState(attributes=attributes, context=context, registry=registry)

    def diff(self, current: CurrentState) -> dict[str, Any]:
        account = current.context["account"]
        diff: dict[str, Any] = {}
        for variant in self.spec.variants():
            changes: dict[str, Any] = {}
            service = structural_diff(variant.to_redfish(), account.get(variant.type) or {})
            if service:
                changes["service"] = service
            if variant.attributes:
                assert current.registry is not None
                check_group_membership(current.registry, list(variant.attributes), "iDRAC")
                attributes = attribute_diff(
                    variant.attributes, current.context["idrac_attributes"], current.registry
                )
                if attributes:
                    changes["attributes"] = attributes
            if changes:
                diff[variant.type] = changes
        return diff

    def validate(self, diff: dict[str, Any], current: CurrentState) -> None:
        if len(diff) > 1:
            raise ValidationRuleViolation(
                "directory_service",
                "ActiveDirectory and LDAP cannot be updated in the same call",
            )
        if self.apply_time is not ApplyTimePolicy.IMMEDIATE:
            raise UnsupportedApplyTime(
                self.group, self.apply_time.value, "directory service changes apply immediately"
            )

        if self.spec.active_directory is not None and "ActiveDirectory" in diff:
            check_active_directory(self.spec.active_directory)
        if self.spec.ldap is not None and "LDAP" in diff:
            check_ldap(self.spec.ldap)

        if current.registry is not None:
            for name, value in self.registry_values(diff).items():
                check_value(current.registry, name, value)

    def registry_values(self, diff: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for changes in diff.values():
            values.update(changes.get("attributes", {}))
        return values

    def build(self, diff: dict[str, Any], current: CurrentState) -> list[Submission]:
        submissions: list[Submission] = []
        for provider, changes in diff.items():
            if "service" in changes:
                submissions.append(
                    Submission(
                        "PATCH",
                        ACCOUNT_SERVICE,
                        {provider: changes["service"]},
                        f"AccountService {provider}",
                        error_marker="error",
                    )
                )
            if "attributes" in changes:
                body = build(
                    changes["attributes"],
                    self.apply_time,
                    apply_time_key=OPERATION_APPLY_TIME_KEY,
                    default_policy=self.default_policy,
                )
                submissions.append(
                    Submission(
                        "PATCH", current.context["idrac_uri"], body, f"{provider} iDRAC attributes"
                    )
                )
        return submissions
