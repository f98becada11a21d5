"""
Private endpoint module.

Binds a private endpoint 1:1 to one sub-resource of a target (blob, vault,
registry) inside the shared-services subnet owned by the core stack. The
endpoint owns a DNS zone group pointing at the matching privatelink zone, so
the A record is created and removed together with the endpoint.
"""

from __future__ import annotations

from constructs import Construct

from cdktf import TerraformOutput
from cdktf_cdktf_provider_azurerm.data_azurerm_private_dns_zone import (
    DataAzurermPrivateDnsZone,
)
from cdktf_cdktf_provider_azurerm.data_azurerm_subnet import DataAzurermSubnet
from cdktf_cdktf_provider_azurerm.private_endpoint import (
    PrivateEndpoint,
    PrivateEndpointPrivateDnsZoneGroup,
    PrivateEndpointPrivateServiceConnection,
)

from ailab_infra.iac_types import PrivateEndpointConfig


def provision_private_endpoint(
    *,
    scope: Construct,
    cfg: PrivateEndpointConfig,
    target_id: str,
    rg_name: str,
    location: str,
    tags: dict,
) -> PrivateEndpoint:
    """Provision the endpoint for `target_id` and export its private IP."""
    # Existing resources in the core resource group
    subnet = DataAzurermSubnet(
        scope,
        f"{cfg.subresource}PeSubnet",
        name=cfg.network.subnet_name,
        virtual_network_name=cfg.network.vnet_name,
        resource_group_name=cfg.network.resource_group_name,
    )
    zone = DataAzurermPrivateDnsZone(
        scope,
        f"{cfg.subresource}PeDnsZone",
        name=cfg.dns_zone_name,
        resource_group_name=cfg.network.resource_group_name,
    )

    endpoint = PrivateEndpoint(
        scope,
        f"{cfg.subresource}PrivateEndpoint",
        name=cfg.name,
        resource_group_name=rg_name,
        location=location,
        subnet_id=subnet.id,
        private_service_connection=PrivateEndpointPrivateServiceConnection(
            name=f"{cfg.name}-connection",
            private_connection_resource_id=target_id,
            is_manual_connection=False,
            subresource_names=[cfg.subresource],
        ),
        private_dns_zone_group=PrivateEndpointPrivateDnsZoneGroup(
            name="default",
            private_dns_zone_ids=[zone.id],
        ),
        tags=tags,
    )

    TerraformOutput(scope, "private_endpoint_name", value=endpoint.name)
    TerraformOutput(
        scope,
        "private_endpoint_ip",
        value=endpoint.private_service_connection.private_ip_address,
    )
    return endpoint
