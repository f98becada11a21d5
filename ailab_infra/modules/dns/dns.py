"""
DNS module.

Private DNS zones for the privatelink namespaces, linked to the shared VNet,
and the DNS Private Resolver whose inbound endpoint VPN clients forward to.
"""

from __future__ import annotations

from typing import Dict, Tuple

from constructs import Construct

from cdktf import TerraformOutput
from cdktf_cdktf_provider_azurerm.private_dns_zone import PrivateDnsZone
from cdktf_cdktf_provider_azurerm.private_dns_zone_virtual_network_link import (
    PrivateDnsZoneVirtualNetworkLink,
)
from cdktf_cdktf_provider_azurerm.private_dns_resolver import PrivateDnsResolver
from cdktf_cdktf_provider_azurerm.private_dns_resolver_inbound_endpoint import (
    PrivateDnsResolverInboundEndpoint,
    PrivateDnsResolverInboundEndpointIpConfigurations,
)
from cdktf_cdktf_provider_azurerm.resource_group import ResourceGroup
from cdktf_cdktf_provider_azurerm.subnet import Subnet
from cdktf_cdktf_provider_azurerm.virtual_network import VirtualNetwork

from ailab_infra.iac_types import CoreConfig


def _zone_construct_id(zone: str) -> str:
    # privatelink.blob.core.windows.net -> blob
    return zone.split(".")[1]


def provision_private_dns_zones(
    *, scope: Construct, cfg: CoreConfig, rg: ResourceGroup, vnet: VirtualNetwork
) -> Dict[str, PrivateDnsZone]:
    """Create one zone + VNet link per privatelink namespace; keyed by zone name."""
    zones: Dict[str, PrivateDnsZone] = {}
    for zone_name in cfg.dns_resolver.zones:
        key = _zone_construct_id(zone_name)
        zone = PrivateDnsZone(
            scope,
            f"pdnsZone-{key}",
            name=zone_name,
            resource_group_name=rg.name,
            tags=cfg.tags,
        )
        PrivateDnsZoneVirtualNetworkLink(
            scope,
            f"pdnsVnetLink-{key}",
            name=f"{cfg.shared_services.vnet_name}-{key}-link",
            resource_group_name=rg.name,
            private_dns_zone_name=zone.name,
            virtual_network_id=vnet.id,
            registration_enabled=False,
            tags=cfg.tags,
        )
        TerraformOutput(scope, f"dns_zone_{key}_id", value=zone.id)
        zones[zone_name] = zone
    return zones


def provision_dns_resolver(
    *,
    scope: Construct,
    cfg: CoreConfig,
    rg: ResourceGroup,
    vnet: VirtualNetwork,
    subnet_inbound: Subnet,
) -> Tuple[PrivateDnsResolver, PrivateDnsResolverInboundEndpoint]:
    """Provision the resolver and return (resolver, inbound_endpoint)."""
    resolver = PrivateDnsResolver(
        scope,
        "dnsResolver",
        name=cfg.dns_resolver.name,
        resource_group_name=rg.name,
        location=cfg.location,
        virtual_network_id=vnet.id,
        tags=cfg.tags,
    )

    inbound = PrivateDnsResolverInboundEndpoint(
        scope,
        "dnsResolverInbound",
        name=cfg.dns_resolver.inbound_endpoint_name,
        private_dns_resolver_id=resolver.id,
        location=cfg.location,
        ip_configurations=PrivateDnsResolverInboundEndpointIpConfigurations(
            subnet_id=subnet_inbound.id,
            private_ip_allocation_method="Dynamic",
        ),
        tags=cfg.tags,
    )

    TerraformOutput(scope, "dns_resolver_id", value=resolver.id)
    TerraformOutput(
        scope,
        "dns_resolver_inbound_ip",
        value=inbound.ip_configurations.private_ip_address,
    )
    return resolver, inbound
