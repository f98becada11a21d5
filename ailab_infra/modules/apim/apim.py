"""
API Management module.

Creates the APIM integration subnet (+ NSG) inside the shared-services VNet
of the core stack and an API Management instance integrated with it. The
system-assigned identity is exported so it can be granted data-plane roles
on backends such as the storage account. With `storage_api` set it also
publishes the Storage API from `storage_api.py`.
"""

from __future__ import annotations

from typing import Tuple

from constructs import Construct

from cdktf import TerraformOutput
from cdktf_cdktf_provider_azurerm.api_management import (
    ApiManagement,
    ApiManagementIdentity,
    ApiManagementVirtualNetworkConfiguration,
)
from cdktf_cdktf_provider_azurerm.network_security_group import NetworkSecurityGroup
from cdktf_cdktf_provider_azurerm.network_security_rule import NetworkSecurityRule
from cdktf_cdktf_provider_azurerm.resource_group import ResourceGroup
from cdktf_cdktf_provider_azurerm.subnet import (
    Subnet,
    SubnetDelegation,
    SubnetDelegationServiceDelegation,
)
from cdktf_cdktf_provider_azurerm.subnet_network_security_group_association import (
    SubnetNetworkSecurityGroupAssociation,
)

from ailab_infra.iac_types import ApimConfig
from ailab_infra.modules.apim.storage_api import provision_storage_api


def _is_v2(sku_name: str) -> bool:
    return sku_name.split("_", 1)[0].endswith("V2")


def provision_apim_subnet(
    *, scope: Construct, cfg: ApimConfig
) -> Tuple[Subnet, SubnetNetworkSecurityGroupAssociation]:
    """Create the integration subnet in the core VNet; v2 tiers need a serverFarms delegation."""
    net = cfg.network
    nsg = NetworkSecurityGroup(
        scope,
        "apimNsg",
        name=cfg.nsg_name,
        location=cfg.location,
        resource_group_name=net.resource_group_name,
        tags=cfg.tags,
    )

    NetworkSecurityRule(
        scope,
        "apimNsgAllowVnetHttps",
        name="AllowVnetHttpsOutbound",
        priority=100,
        direction="Outbound",
        access="Allow",
        protocol="Tcp",
        source_port_range="*",
        destination_port_range="443",
        source_address_prefix="VirtualNetwork",
        destination_address_prefix="VirtualNetwork",
        resource_group_name=net.resource_group_name,
        network_security_group_name=nsg.name,
    )

    if not _is_v2(cfg.sku_name):
        # Injected (classic) tiers need the management endpoint reachable
        NetworkSecurityRule(
            scope,
            "apimNsgAllowManagement",
            name="AllowApimManagementInbound",
            priority=110,
            direction="Inbound",
            access="Allow",
            protocol="Tcp",
            source_port_range="*",
            destination_port_range="3443",
            source_address_prefix="ApiManagement",
            destination_address_prefix="VirtualNetwork",
            resource_group_name=net.resource_group_name,
            network_security_group_name=nsg.name,
        )

    delegation = (
        [
            SubnetDelegation(
                name="apim-v2",
                service_delegation=SubnetDelegationServiceDelegation(
                    name="Microsoft.Web/serverFarms",
                    actions=["Microsoft.Network/virtualNetworks/subnets/action"],
                ),
            )
        ]
        if _is_v2(cfg.sku_name)
        else None
    )

    subnet = Subnet(
        scope,
        "apimSubnet",
        name=net.subnet_name,
        resource_group_name=net.resource_group_name,
        virtual_network_name=net.vnet_name,
        address_prefixes=[cfg.subnet_prefix],
        delegation=delegation,
    )

    assoc = SubnetNetworkSecurityGroupAssociation(
        scope,
        "apimSubnetNsgAssoc",
        subnet_id=subnet.id,
        network_security_group_id=nsg.id,
    )
    TerraformOutput(scope, "apim_subnet_id", value=subnet.id)
    return subnet, assoc


def provision_apim(*, scope: Construct, cfg: ApimConfig) -> ApiManagement:
    rg = ResourceGroup(
        scope, "rg", name=cfg.resource_group_name, location=cfg.location, tags=cfg.tags
    )
    subnet, assoc = provision_apim_subnet(scope=scope, cfg=cfg)

    apim = ApiManagement(
        scope,
        "apim",
        name=cfg.apim_name,
        location=cfg.location,
        resource_group_name=rg.name,
        publisher_name=cfg.publisher_name,
        publisher_email=cfg.publisher_email,
        sku_name=cfg.sku_name,
        identity=ApiManagementIdentity(type="SystemAssigned"),
        virtual_network_type=cfg.virtual_network_type,
        virtual_network_configuration=ApiManagementVirtualNetworkConfiguration(
            subnet_id=subnet.id,
        ),
        depends_on=[assoc],
        tags=cfg.tags,
    )

    TerraformOutput(scope, "resource_group", value=rg.name)
    TerraformOutput(scope, "apim_name", value=apim.name)
    TerraformOutput(scope, "apim_gateway_url", value=apim.gateway_url)
    TerraformOutput(scope, "apim_principal_id", value=apim.identity.principal_id)
    if cfg.storage_api:
        provision_storage_api(scope=scope, cfg=cfg.storage_api, apim=apim, rg_name=rg.name)
    return apim
