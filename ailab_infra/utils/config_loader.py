"""
Config loader for ARM parameter files -> typed config used by the CDKTF stacks.

Functional, pure helpers that read the `{"parameters": {"x": {"value": ...}}}`
documents under `parameters/`, apply the declared defaults and constraints,
and build the frozen dataclasses each stack consumes.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from ailab_infra.iac_types import (
    ApimConfig,
    CmkConfig,
    CoreConfig,
    DnsResolverConfig,
    HubConfig,
    KeyVaultConfig,
    NetworkRef,
    PrivateEndpointConfig,
    RegistryConfig,
    SharedServicesConfig,
    StorageApiConfig,
    StorageConfig,
    SubnetConfig,
)
from ailab_infra.utils.validation import (
    ConfigError,
    ParamSpec,
    is_iso8601_duration,
    iso8601_days,
    resolve_parameters,
)


STACKS = ("core", "keyvault", "storage", "registry", "apim")

PROJECT_TAG = "ai-lab"
DEPLOYED_BY_TAG = "labctl"
REQUIRED_TAGS = ("project", "environment", "component", "deployedBy")

PRIVATE_DNS_ZONES = {
    "blob": "privatelink.blob.core.windows.net",
    "vault": "privatelink.vaultcore.azure.net",
    "registry": "privatelink.azurecr.io",
}

_CIDR = r"\d{1,3}(\.\d{1,3}){3}/\d{1,2}"
_EMAIL = r"[^@\s]+@[^@\s]+\.[^@\s]+"

_COMMON = [
    ParamSpec("location", default="eastus2", min_length=1),
    ParamSpec("environment", default="dev", allowed=("dev", "test", "prod")),
    ParamSpec("tags", kind=dict, default={}),
]

_SPOKE_NETWORK = [
    ParamSpec("coreResourceGroupName", default="rg-ai-core", min_length=1, max_length=90),
    ParamSpec("vnetName", default="vnet-ai-shared", min_length=2, max_length=64),
    ParamSpec("subnetName", default="snet-private-endpoints", min_length=1, max_length=80),
]

PARAMETER_SPECS: Dict[str, List[ParamSpec]] = {
    "core": _COMMON
    + [
        ParamSpec("resourceGroupName", default="rg-ai-core", min_length=1, max_length=90),
        ParamSpec("vwanName", default="vwan-ai-hub", min_length=1, max_length=80),
        ParamSpec("vhubName", default="vhub-ai-eastus2", min_length=1, max_length=80),
        ParamSpec("vhubAddressPrefix", default="10.0.0.0/23", pattern=_CIDR),
        ParamSpec("vpnGatewayName", default="vpngw-ai-hub", min_length=1, max_length=80),
        ParamSpec("vpnGatewayScaleUnit", kind=int, default=1, min_value=1, max_value=20),
        # vWAN VPN gateways always advertise the Azure-reserved ASN
        ParamSpec("bgpAsn", kind=int, default=65515, allowed=(65515,)),
        ParamSpec("bgpPeerWeight", kind=int, default=0, min_value=0, max_value=100),
        ParamSpec("sharedVnetName", default="vnet-ai-shared", min_length=2, max_length=64),
        ParamSpec("sharedVnetAddressPrefix", default="10.1.0.0/24", pattern=_CIDR),
        ParamSpec("privateEndpointSubnetName", default="snet-private-endpoints", min_length=1),
        ParamSpec("privateEndpointSubnetPrefix", default="10.1.0.0/26", pattern=_CIDR),
        ParamSpec("dnsInboundSubnetName", default="snet-dns-inbound", min_length=1),
        ParamSpec("dnsInboundSubnetPrefix", default="10.1.0.128/28", pattern=_CIDR),
        ParamSpec("dnsResolverName", default="dnsr-ai-hub", min_length=1, max_length=80),
    ],
    "keyvault": _COMMON
    + _SPOKE_NETWORK
    + [
        ParamSpec("resourceGroupName", default="rg-ai-keyvault", min_length=1, max_length=90),
        ParamSpec("keyVaultNameSuffix", required=True, pattern=r"[a-z0-9]{3,14}"),
        ParamSpec("skuName", default="standard", allowed=("standard", "premium")),
        ParamSpec("softDeleteRetentionDays", kind=int, default=90, min_value=7, max_value=90),
        ParamSpec("enablePurgeProtection", kind=bool, default=True),
    ],
    "storage": _COMMON
    + _SPOKE_NETWORK
    + [
        ParamSpec("resourceGroupName", default="rg-ai-storage", min_length=1, max_length=90),
        ParamSpec("storageNameSuffix", required=True, pattern=r"[a-z0-9]{3,17}"),
        ParamSpec(
            "skuName",
            default="Standard_LRS",
            allowed=("Standard_LRS", "Standard_ZRS", "Standard_GRS", "Standard_RAGRS"),
        ),
        ParamSpec("accessTier", default="Hot", allowed=("Hot", "Cool")),
        ParamSpec("blobSoftDeleteDays", kind=int, default=7, min_value=1, max_value=365),
        ParamSpec("containerSoftDeleteDays", kind=int, default=7, min_value=1, max_value=365),
        ParamSpec("enableVersioning", kind=bool, default=True),
        ParamSpec("enableCmk", kind=bool, default=True),
        ParamSpec("keyVaultName", default="", max_length=24),
        ParamSpec("keyVaultResourceGroupName", default="rg-ai-keyvault", min_length=1),
        ParamSpec("keyName", default="storage-cmk", pattern=r"[0-9A-Za-z-]{1,127}"),
        ParamSpec("keyType", default="RSA", allowed=("RSA", "RSA-HSM")),
        ParamSpec("keySize", kind=int, default=2048, allowed=(2048, 3072, 4096)),
        ParamSpec("keyRotationInterval", default="P90D"),
        ParamSpec("keyExpireAfter", default="P180D"),
        ParamSpec("keyNotifyBeforeExpiry", default="P30D"),
    ],
    "registry": _COMMON
    + _SPOKE_NETWORK
    + [
        ParamSpec("resourceGroupName", default="rg-ai-registry", min_length=1, max_length=90),
        ParamSpec("registryNameSuffix", required=True, pattern=r"[a-z0-9]{3,42}"),
        ParamSpec("skuName", default="Premium", allowed=("Basic", "Standard", "Premium")),
    ],
    "apim": _COMMON
    + [
        ParamSpec("resourceGroupName", default="rg-ai-apim", min_length=1, max_length=90),
        ParamSpec("coreResourceGroupName", default="rg-ai-core", min_length=1, max_length=90),
        ParamSpec("vnetName", default="vnet-ai-shared", min_length=2, max_length=64),
        ParamSpec("apimName", default="apim-ai-lab", min_length=1, max_length=50),
        ParamSpec(
            "skuName",
            default="StandardV2_1",
            allowed=("Developer_1", "StandardV2_1", "Premium_1"),
        ),
        ParamSpec("publisherName", default="AI Lab", min_length=1, max_length=100),
        ParamSpec("publisherEmail", required=True, pattern=_EMAIL),
        ParamSpec("apimSubnetName", default="snet-apim-integration", min_length=1),
        ParamSpec("apimSubnetPrefix", default="10.1.0.64/26", pattern=_CIDR),
        ParamSpec("nsgName", default="nsg-apim-integration", min_length=1, max_length=80),
        ParamSpec("virtualNetworkType", default="External", allowed=("External", "Internal")),
        ParamSpec("enableStorageApi", kind=bool, default=True),
        ParamSpec("storageNameSuffix", default="001", pattern=r"[a-z0-9]{3,17}"),
        ParamSpec("storageContainerName", default="files", pattern=r"[a-z0-9](?!.*--)[a-z0-9-]{1,61}[a-z0-9]"),
        ParamSpec("storageApiPath", default="storage", pattern=r"[a-z0-9][a-z0-9/-]{0,399}"),
        ParamSpec("jwtAudience", default=""),
        ParamSpec("jwtTenantId", default=""),
    ],
}


def storage_account_name(suffix: str) -> str:
    return f"stailab{suffix}"


def key_vault_name(suffix: str) -> str:
    return f"kv-ai-lab-{suffix}"


def registry_name(suffix: str) -> str:
    return f"acraihub{suffix}"


def cmk_identity_name(account_name: str) -> str:
    return f"id-{account_name}-cmk"


def private_endpoint_name(target: str, subresource: str) -> str:
    return f"pe-{target}-{subresource}"


def build_tags(component: str, environment: str, extra: Mapping[str, str]) -> Dict[str, str]:
    """Required tags first; parameter-file tags may add to or override them."""
    tags = {
        "project": PROJECT_TAG,
        "environment": environment,
        "component": component,
        "deployedBy": DEPLOYED_BY_TAG,
    }
    tags.update({str(k): str(v) for k, v in extra.items()})
    return tags


def parameter_file_path(
    *, repo_root: Path, stack: str, env: Mapping[str, str] = os.environ
) -> Path:
    # Use default if env var is missing or empty
    override = env.get(f"{stack.upper()}_PARAMETER_FILE")
    if override and override.strip():
        return (repo_root / override).resolve()
    return (repo_root / "parameters" / f"{stack}.parameters.json").resolve()


def parse_parameter_document(content: str) -> Dict[str, Any]:
    """Return `{name: value}` from an ARM deployment parameters document."""
    try:
        doc = json.loads(content)
    except json.JSONDecodeError as ex:
        raise ConfigError([f"invalid JSON in parameter file: {ex}"]) from ex
    params = doc.get("parameters") if isinstance(doc, dict) else None
    if not isinstance(params, dict):
        raise ConfigError(["parameter file has no 'parameters' object"])

    values: Dict[str, Any] = {}
    problems: List[str] = []
    for name, entry in params.items():
        if not isinstance(entry, dict):
            problems.append(f"{name}: entry must be an object")
        elif "value" in entry:
            values[name] = entry["value"]
        elif "reference" in entry:
            problems.append(f"{name}: Key Vault references are not supported")
        else:
            problems.append(f"{name}: entry has no 'value'")
    if problems:
        raise ConfigError(problems)
    return values


def load_parameters(path: Path, stack: str) -> Dict[str, Any]:
    if stack not in PARAMETER_SPECS:
        raise ValueError(f"Unknown stack: {stack}")
    if not path.exists():
        raise FileNotFoundError(f"parameter file not found: {path}")
    values = parse_parameter_document(path.read_text(encoding="utf-8"))
    return resolve_parameters(PARAMETER_SPECS[stack], values)


def _spoke_network(p: Mapping[str, Any]) -> NetworkRef:
    return NetworkRef(
        resource_group_name=p["coreResourceGroupName"],
        vnet_name=p["vnetName"],
        subnet_name=p["subnetName"],
    )


def _private_endpoint(target: str, subresource: str, network: NetworkRef) -> PrivateEndpointConfig:
    return PrivateEndpointConfig(
        name=private_endpoint_name(target, subresource),
        subresource=subresource,
        dns_zone_name=PRIVATE_DNS_ZONES[subresource],
        network=network,
    )


def build_core_config(p: Mapping[str, Any]) -> CoreConfig:
    return CoreConfig(
        resource_group_name=p["resourceGroupName"],
        location=p["location"],
        tags=build_tags("core", p["environment"], p["tags"]),
        hub=HubConfig(
            vwan_name=p["vwanName"],
            vhub_name=p["vhubName"],
            address_prefix=p["vhubAddressPrefix"],
            vpn_gateway_name=p["vpnGatewayName"],
            vpn_scale_unit=p["vpnGatewayScaleUnit"],
            bgp_asn=p["bgpAsn"],
            bgp_peer_weight=p["bgpPeerWeight"],
        ),
        shared_services=SharedServicesConfig(
            vnet_name=p["sharedVnetName"],
            address_space=[p["sharedVnetAddressPrefix"]],
            private_endpoint_subnet=SubnetConfig(
                name=p["privateEndpointSubnetName"],
                address_prefix=p["privateEndpointSubnetPrefix"],
            ),
            dns_inbound_subnet=SubnetConfig(
                name=p["dnsInboundSubnetName"],
                address_prefix=p["dnsInboundSubnetPrefix"],
            ),
            hub_connection_name=f"{p['sharedVnetName']}-to-{p['vhubName']}",
        ),
        dns_resolver=DnsResolverConfig(
            name=p["dnsResolverName"],
            inbound_endpoint_name=f"{p['dnsResolverName']}-inbound",
            zones=list(PRIVATE_DNS_ZONES.values()),
        ),
    )


def build_keyvault_config(p: Mapping[str, Any]) -> KeyVaultConfig:
    vault = key_vault_name(p["keyVaultNameSuffix"])
    return KeyVaultConfig(
        resource_group_name=p["resourceGroupName"],
        location=p["location"],
        tags=build_tags("keyvault", p["environment"], p["tags"]),
        vault_name=vault,
        sku=p["skuName"],
        soft_delete_retention_days=p["softDeleteRetentionDays"],
        purge_protection_enabled=p["enablePurgeProtection"],
        private_endpoint=_private_endpoint(vault, "vault", _spoke_network(p)),
    )


def _build_cmk_config(
    p: Mapping[str, Any], account: str, env: Mapping[str, str]
) -> CmkConfig:
    # Discover-or-accept: explicit parameter wins, then the name labctl discovered
    vault = p["keyVaultName"] or env.get("KEY_VAULT_NAME", "").strip()
    problems: List[str] = []
    if not vault:
        problems.append(
            "keyVaultName: not set and KEY_VAULT_NAME not provided "
            "(labctl deploy storage discovers it from keyVaultResourceGroupName)"
        )
    durations = ("keyRotationInterval", "keyExpireAfter", "keyNotifyBeforeExpiry")
    bad = [name for name in durations if not is_iso8601_duration(p[name])]
    problems.extend(f"{name}: {p[name]!r} is not an ISO 8601 duration" for name in bad)
    # The key must rotate before it expires
    if not bad and iso8601_days(p["keyExpireAfter"]) <= iso8601_days(p["keyRotationInterval"]):
        problems.append(
            f"keyExpireAfter: {p['keyExpireAfter']!r} must be longer than "
            f"keyRotationInterval {p['keyRotationInterval']!r}"
        )
    if problems:
        raise ConfigError(problems)
    return CmkConfig(
        key_vault_name=vault,
        key_vault_resource_group_name=p["keyVaultResourceGroupName"],
        identity_name=cmk_identity_name(account),
        key_name=p["keyName"],
        key_type=p["keyType"],
        key_size=p["keySize"],
        rotation_interval=p["keyRotationInterval"],
        expire_after=p["keyExpireAfter"],
        notify_before_expiry=p["keyNotifyBeforeExpiry"],
    )


def build_storage_config(
    p: Mapping[str, Any], env: Mapping[str, str] = os.environ
) -> StorageConfig:
    account = storage_account_name(p["storageNameSuffix"])
    return StorageConfig(
        resource_group_name=p["resourceGroupName"],
        location=p["location"],
        tags=build_tags("storage", p["environment"], p["tags"]),
        account_name=account,
        sku=p["skuName"],
        access_tier=p["accessTier"],
        blob_soft_delete_days=p["blobSoftDeleteDays"],
        container_soft_delete_days=p["containerSoftDeleteDays"],
        enable_versioning=p["enableVersioning"],
        private_endpoint=_private_endpoint(account, "blob", _spoke_network(p)),
        cmk=_build_cmk_config(p, account, env) if p["enableCmk"] else None,
    )


def build_registry_config(p: Mapping[str, Any]) -> RegistryConfig:
    if p["skuName"] != "Premium":
        raise ConfigError([f"skuName: private endpoints require Premium, got {p['skuName']!r}"])
    registry = registry_name(p["registryNameSuffix"])
    return RegistryConfig(
        resource_group_name=p["resourceGroupName"],
        location=p["location"],
        tags=build_tags("registry", p["environment"], p["tags"]),
        registry_name=registry,
        sku=p["skuName"],
        private_endpoint=_private_endpoint(registry, "registry", _spoke_network(p)),
    )


def _build_storage_api_config(p: Mapping[str, Any]) -> StorageApiConfig:
    if not p["jwtAudience"]:
        raise ConfigError(
            ["jwtAudience: required when enableStorageApi is true (app ID URI or client id)"]
        )
    return StorageApiConfig(
        storage_account_name=storage_account_name(p["storageNameSuffix"]),
        container_name=p["storageContainerName"],
        path=p["storageApiPath"],
        audience=p["jwtAudience"],
        tenant_id=p["jwtTenantId"],
    )


def build_apim_config(p: Mapping[str, Any]) -> ApimConfig:
    # StandardV2 integrates outbound only; Internal mode needs injection
    if p["skuName"].startswith("StandardV2") and p["virtualNetworkType"] == "Internal":
        raise ConfigError(
            [
                f"virtualNetworkType: Internal is not supported by {p['skuName']} "
                "(use External, or Developer_1/Premium_1 for injection)"
            ]
        )
    return ApimConfig(
        resource_group_name=p["resourceGroupName"],
        location=p["location"],
        tags=build_tags("apim", p["environment"], p["tags"]),
        apim_name=p["apimName"],
        sku_name=p["skuName"],
        publisher_name=p["publisherName"],
        publisher_email=p["publisherEmail"],
        network=NetworkRef(
            resource_group_name=p["coreResourceGroupName"],
            vnet_name=p["vnetName"],
            subnet_name=p["apimSubnetName"],
        ),
        subnet_prefix=p["apimSubnetPrefix"],
        nsg_name=p["nsgName"],
        virtual_network_type=p["virtualNetworkType"],
        storage_api=_build_storage_api_config(p) if p["enableStorageApi"] else None,
    )


_BUILDERS: Dict[str, Callable[..., Any]] = {
    "core": build_core_config,
    "keyvault": build_keyvault_config,
    "storage": build_storage_config,
    "registry": build_registry_config,
    "apim": build_apim_config,
}


def load_stack_config(
    stack: str,
    *,
    repo_root: Path,
    env: Mapping[str, str] = os.environ,
    path: Optional[Path] = None,
) -> Any:
    """Load, check and build the typed config for one stack."""
    vars_path = path or parameter_file_path(repo_root=repo_root, stack=stack, env=env)
    params = load_parameters(vars_path, stack)
    if stack == "storage":
        return build_storage_config(params, env)
    return _BUILDERS[stack](params)
