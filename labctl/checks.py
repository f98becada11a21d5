"""
Post-deployment assertions.

Every check is a pure function over the JSON documents returned by
`az ... show -o json`, so the same rules run against live resources and in
unit tests. A check never raises on a missing field; it reports a failure.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from ailab_infra.utils.config_loader import REQUIRED_TAGS


PASS = "pass"
FAIL = "fail"
WARN = "warn"

DEFAULT_PRIVATE_CIDRS = ("10.0.0.0/8",)


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: str
    detail: str

    @property
    def failed(self) -> bool:
        return self.status == FAIL


def _get(doc: Optional[Mapping[str, Any]], path: str) -> Any:
    """Dotted lookup, case-insensitive per segment (az mixes keyVaultUri/keyvaulturi)."""
    node: Any = doc
    for part in path.split("."):
        if not isinstance(node, Mapping):
            return None
        match = next((k for k in node if k.lower() == part.lower()), None)
        if match is None:
            return None
        node = node[match]
    return node


def _expect(name: str, actual: Any, expected: Any) -> CheckResult:
    if actual == expected:
        return CheckResult(name, PASS, f"{actual}")
    return CheckResult(name, FAIL, f"got {actual!r}, expected {expected!r}")


def all_passed(results: Iterable[CheckResult]) -> bool:
    return not any(r.failed for r in results)


def check_storage_public_access(account: Mapping[str, Any]) -> List[CheckResult]:
    return [
        _expect("storage public network access", _get(account, "publicNetworkAccess"), "Disabled"),
        _expect("storage shared key access", _get(account, "allowSharedKeyAccess"), False),
        _expect("storage blob public access", _get(account, "allowBlobPublicAccess"), False),
    ]


def _normalize_uri(uri: Optional[str]) -> str:
    return (uri or "").rstrip("/").lower()


def check_storage_cmk(
    account: Mapping[str, Any], key_vault_uri: str, key_name: str
) -> List[CheckResult]:
    results = [
        _expect("cmk key source", _get(account, "encryption.keySource"), "Microsoft.Keyvault")
    ]
    actual_uri = _get(account, "encryption.keyVaultProperties.keyVaultUri")
    if actual_uri and _normalize_uri(actual_uri) == _normalize_uri(key_vault_uri):
        results.append(CheckResult("cmk key vault uri", PASS, actual_uri))
    else:
        results.append(
            CheckResult("cmk key vault uri", FAIL, f"got {actual_uri!r}, expected {key_vault_uri!r}")
        )
    results.append(
        _expect("cmk key name", _get(account, "encryption.keyVaultProperties.keyName"), key_name)
    )
    identity = _get(account, "encryption.encryptionIdentity.encryptionUserAssignedIdentity")
    if identity:
        results.append(CheckResult("cmk user-assigned identity", PASS, identity))
    else:
        results.append(CheckResult("cmk user-assigned identity", FAIL, "not configured"))
    return results


def check_key_vault(vault: Mapping[str, Any], require_cmk_ready: bool = True) -> List[CheckResult]:
    results = [
        _expect("key vault rbac authorization", _get(vault, "properties.enableRbacAuthorization"), True),
        _expect("key vault public network access", _get(vault, "properties.publicNetworkAccess"), "Disabled"),
    ]
    if require_cmk_ready:
        # Storage refuses CMK from a vault that can lose its keys
        results.append(_expect("key vault soft delete", _get(vault, "properties.enableSoftDelete"), True))
        results.append(
            _expect("key vault purge protection", _get(vault, "properties.enablePurgeProtection"), True)
        )
    return results


def check_registry(registry: Mapping[str, Any]) -> List[CheckResult]:
    return [
        _expect("registry admin user", _get(registry, "adminUserEnabled"), False),
        _expect("registry public network access", _get(registry, "publicNetworkAccess"), "Disabled"),
        _expect("registry sku", _get(registry, "sku.name"), "Premium"),
    ]


def check_private_endpoint(endpoint: Mapping[str, Any]) -> List[CheckResult]:
    connections = _get(endpoint, "privateLinkServiceConnections") or []
    status = _get(connections[0], "privateLinkServiceConnectionState.status") if connections else None
    results = [_expect("private endpoint connection", status, "Approved")]

    address = private_endpoint_ip(endpoint)
    if address:
        results.append(CheckResult("private endpoint ip", PASS, address))
    else:
        results.append(CheckResult("private endpoint ip", WARN, "not available yet"))
    return results


def private_endpoint_ip(endpoint: Mapping[str, Any]) -> Optional[str]:
    configs = _get(endpoint, "customDnsConfigs") or []
    addresses = _get(configs[0], "ipAddresses") if configs else None
    return addresses[0] if addresses else None


def is_private_address(address: str, cidrs: Sequence[str] = DEFAULT_PRIVATE_CIDRS) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return any(ip in ipaddress.ip_network(c, strict=False) for c in cidrs)


def check_dns_resolution(
    fqdn: str,
    addresses: Sequence[str],
    expected_ip: Optional[str] = None,
    cidrs: Sequence[str] = DEFAULT_PRIVATE_CIDRS,
) -> CheckResult:
    name = f"dns {fqdn}"
    if not addresses:
        return CheckResult(name, WARN, "resolution failed (VPN may not be connected)")
    # Any public answer fails, wherever it sits in the list
    public = [a for a in addresses if a != expected_ip and not is_private_address(a, cidrs)]
    if public:
        return CheckResult(
            name, FAIL, f"resolves to public ip {', '.join(public)} (expected {expected_ip or 'private'})"
        )
    listed = ", ".join(addresses)
    if expected_ip and expected_ip in addresses:
        return CheckResult(name, PASS, f"resolves to private endpoint ip {listed}")
    return CheckResult(name, PASS, f"resolves to private range {listed}")


def check_tags(resource: Mapping[str, Any], required: Sequence[str] = REQUIRED_TAGS) -> List[CheckResult]:
    tags = _get(resource, "tags") or {}
    results = []
    for tag in required:
        value = tags.get(tag)
        if value:
            results.append(CheckResult(f"tag {tag}", PASS, value))
        else:
            results.append(CheckResult(f"tag {tag}", FAIL, "missing"))
    return results


def check_vwan(vwan: Mapping[str, Any]) -> List[CheckResult]:
    # az flattens properties.type into the top level next to the resource type
    wan_type = _get(vwan, "typePropertiesType") or _get(vwan, "properties.type") or _get(vwan, "type")
    return [
        _expect("vwan provisioning state", _get(vwan, "provisioningState"), "Succeeded"),
        _expect("vwan type", wan_type, "Standard"),
    ]


def check_vhub(vhub: Mapping[str, Any], address_prefix: str) -> List[CheckResult]:
    results = [
        _expect("vhub provisioning state", _get(vhub, "provisioningState"), "Succeeded"),
        _expect("vhub address prefix", _get(vhub, "addressPrefix"), address_prefix),
    ]
    routing = _get(vhub, "routingState")
    if routing == "Provisioned":
        results.append(CheckResult("vhub routing state", PASS, routing))
    else:
        # routing can lag the hub itself by several minutes
        results.append(CheckResult("vhub routing state", WARN, f"{routing}"))
    return results


def check_vpn_gateway(gateway: Mapping[str, Any], asn: int) -> List[CheckResult]:
    results = [
        _expect("vpn gateway provisioning state", _get(gateway, "provisioningState"), "Succeeded"),
        _expect("vpn gateway bgp asn", _get(gateway, "bgpSettings.asn"), asn),
    ]
    peering = _get(gateway, "bgpSettings.bgpPeeringAddresses") or []
    defaults = _get(peering[0], "defaultBgpIpAddresses") if peering else None
    if defaults:
        results.append(CheckResult("vpn gateway bgp peering address", PASS, defaults[0]))
    else:
        results.append(CheckResult("vpn gateway bgp peering address", WARN, "not assigned yet"))
    return results


def check_apim(apim: Mapping[str, Any], virtual_network_type: str) -> List[CheckResult]:
    return [
        _expect("apim provisioning state", _get(apim, "provisioningState"), "Succeeded"),
        _expect("apim virtual network type", _get(apim, "virtualNetworkType"), virtual_network_type),
    ]
