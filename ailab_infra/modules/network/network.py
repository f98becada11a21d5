"""
Network module.

Creates the hub (RG, Virtual WAN, virtual hub, site-to-site VPN gateway with
BGP) and the shared-services VNet that is connected to the hub and hosts the
private endpoints and the DNS resolver.
"""

from __future__ import annotations

from typing import Tuple

from constructs import Construct

from cdktf import TerraformOutput
from cdktf_cdktf_provider_azurerm.resource_group import ResourceGroup
from cdktf_cdktf_provider_azurerm.virtual_wan import VirtualWan
from cdktf_cdktf_provider_azurerm.virtual_hub import VirtualHub
from cdktf_cdktf_provider_azurerm.virtual_hub_connection import VirtualHubConnection
from cdktf_cdktf_provider_azurerm.vpn_gateway import VpnGateway, VpnGatewayBgpSettings
from cdktf_cdktf_provider_azurerm.virtual_network import VirtualNetwork
from cdktf_cdktf_provider_azurerm.subnet import (
    Subnet,
    SubnetDelegation,
    SubnetDelegationServiceDelegation,
)

from ailab_infra.iac_types import CoreConfig


def provision_hub(
    *, scope: Construct, cfg: CoreConfig
) -> Tuple[ResourceGroup, VirtualWan, VirtualHub, VpnGateway]:
    """Provision the vWAN hub and return (rg, vwan, vhub, vpn_gateway)."""
    rg = ResourceGroup(
        scope, "rg", name=cfg.resource_group_name, location=cfg.location, tags=cfg.tags
    )

    vwan = VirtualWan(
        scope,
        "vwan",
        name=cfg.hub.vwan_name,
        resource_group_name=rg.name,
        location=cfg.location,
        type="Standard",
        allow_branch_to_branch_traffic=True,
        tags=cfg.tags,
    )

    vhub = VirtualHub(
        scope,
        "vhub",
        name=cfg.hub.vhub_name,
        resource_group_name=rg.name,
        location=cfg.location,
        virtual_wan_id=vwan.id,
        address_prefix=cfg.hub.address_prefix,
        sku="Standard",
        tags=cfg.tags,
    )

    # Site-to-site gateway; BGP is what the Global Secure Access peering needs
    vpn_gateway = VpnGateway(
        scope,
        "vpnGateway",
        name=cfg.hub.vpn_gateway_name,
        resource_group_name=rg.name,
        location=cfg.location,
        virtual_hub_id=vhub.id,
        scale_unit=cfg.hub.vpn_scale_unit,
        bgp_settings=VpnGatewayBgpSettings(
            asn=cfg.hub.bgp_asn,
            peer_weight=cfg.hub.bgp_peer_weight,
        ),
        tags=cfg.tags,
    )

    TerraformOutput(scope, "resource_group", value=rg.name)
    TerraformOutput(scope, "vwan_id", value=vwan.id)
    TerraformOutput(scope, "vhub_id", value=vhub.id)
    TerraformOutput(scope, "vhub_address_prefix", value=cfg.hub.address_prefix)
    TerraformOutput(scope, "vpn_gateway_name", value=vpn_gateway.name)
    TerraformOutput(scope, "vpn_gateway_bgp_asn", value=cfg.hub.bgp_asn)

    return rg, vwan, vhub, vpn_gateway


def provision_shared_services(
    *, scope: Construct, cfg: CoreConfig, rg: ResourceGroup, vhub: VirtualHub
) -> Tuple[VirtualNetwork, Subnet, Subnet]:
    """Provision the spoke VNet and return (vnet, subnet_private_endpoints, subnet_dns_inbound)."""
    shared = cfg.shared_services

    vnet = VirtualNetwork(
        scope,
        "sharedVnet",
        name=shared.vnet_name,
        resource_group_name=rg.name,
        location=cfg.location,
        address_space=shared.address_space,
        tags=cfg.tags,
    )

    subnet_pe = Subnet(
        scope,
        "subnetPrivateEndpoints",
        name=shared.private_endpoint_subnet.name,
        resource_group_name=rg.name,
        virtual_network_name=vnet.name,
        address_prefixes=[shared.private_endpoint_subnet.address_prefix],
        private_endpoint_network_policies="Disabled",
    )

    subnet_dns = Subnet(
        scope,
        "subnetDnsInbound",
        name=shared.dns_inbound_subnet.name,
        resource_group_name=rg.name,
        virtual_network_name=vnet.name,
        address_prefixes=[shared.dns_inbound_subnet.address_prefix],
        delegation=[
            SubnetDelegation(
                name="dns-resolver",
                service_delegation=SubnetDelegationServiceDelegation(
                    name="Microsoft.Network/dnsResolvers",
                    actions=["Microsoft.Network/virtualNetworks/subnets/join/action"],
                ),
            )
        ],
    )

    VirtualHubConnection(
        scope,
        "hubConnection",
        name=shared.hub_connection_name,
        virtual_hub_id=vhub.id,
        remote_virtual_network_id=vnet.id,
        internet_security_enabled=False,
    )

    TerraformOutput(scope, "shared_vnet_id", value=vnet.id)
    TerraformOutput(scope, "private_endpoint_subnet_id", value=subnet_pe.id)

    return vnet, subnet_pe, subnet_dns
