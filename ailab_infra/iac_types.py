from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class SubnetConfig:
    name: str
    address_prefix: str


@dataclass(frozen=True)
class HubConfig:
    vwan_name: str
    vhub_name: str
    address_prefix: str
    vpn_gateway_name: str
    vpn_scale_unit: int
    bgp_asn: int
    bgp_peer_weight: int


@dataclass(frozen=True)
class SharedServicesConfig:
    vnet_name: str
    address_space: List[str]
    private_endpoint_subnet: SubnetConfig
    dns_inbound_subnet: SubnetConfig
    hub_connection_name: str


@dataclass(frozen=True)
class DnsResolverConfig:
    name: str
    inbound_endpoint_name: str
    zones: List[str]


@dataclass(frozen=True)
class CoreConfig:
    resource_group_name: str
    location: str
    tags: Dict[str, str]
    hub: HubConfig
    shared_services: SharedServicesConfig
    dns_resolver: DnsResolverConfig


@dataclass(frozen=True)
class NetworkRef:
    """Pointer at the shared-services network owned by the core stack."""

    resource_group_name: str
    vnet_name: str
    subnet_name: str


@dataclass(frozen=True)
class PrivateEndpointConfig:
    name: str
    subresource: str  # blob, vault, registry
    dns_zone_name: str
    network: NetworkRef


@dataclass(frozen=True)
class KeyVaultConfig:
    resource_group_name: str
    location: str
    tags: Dict[str, str]
    vault_name: str
    sku: str  # standard or premium
    soft_delete_retention_days: int
    purge_protection_enabled: bool
    private_endpoint: PrivateEndpointConfig


@dataclass(frozen=True)
class CmkConfig:
    key_vault_name: str
    key_vault_resource_group_name: str
    identity_name: str
    key_name: str
    key_type: str  # RSA or RSA-HSM
    key_size: int
    rotation_interval: str  # ISO 8601 duration
    expire_after: str
    notify_before_expiry: str


@dataclass(frozen=True)
class StorageConfig:
    resource_group_name: str
    location: str
    tags: Dict[str, str]
    account_name: str
    sku: str  # Standard_LRS, Standard_ZRS, ...
    access_tier: str  # Hot/Cool
    blob_soft_delete_days: int
    container_soft_delete_days: int
    enable_versioning: bool
    private_endpoint: PrivateEndpointConfig
    cmk: Optional[CmkConfig] = None


@dataclass(frozen=True)
class RegistryConfig:
    resource_group_name: str
    location: str
    tags: Dict[str, str]
    registry_name: str
    sku: str  # Basic, Standard, Premium
    private_endpoint: PrivateEndpointConfig


@dataclass(frozen=True)
class StorageApiConfig:
    """Blob container exposed through APIM behind Entra ID tokens."""

    storage_account_name: str
    container_name: str
    path: str  # gateway path, e.g. https://<apim>.azure-api.net/storage
    audience: str
    tenant_id: str = ""  # empty: tenant of the deploying client


@dataclass(frozen=True)
class ApimConfig:
    resource_group_name: str
    location: str
    tags: Dict[str, str]
    apim_name: str
    sku_name: str
    publisher_name: str
    publisher_email: str
    network: NetworkRef
    subnet_prefix: str
    nsg_name: str
    virtual_network_type: str = "External"
    storage_api: Optional[StorageApiConfig] = None
