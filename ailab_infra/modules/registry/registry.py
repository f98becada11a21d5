"""
Container registry module.

Premium ACR (private endpoints need Premium) with admin user and public
network access disabled, reachable through a `registry` private endpoint.
"""

from __future__ import annotations

from constructs import Construct

from cdktf import TerraformOutput
from cdktf_cdktf_provider_azurerm.container_registry import ContainerRegistry
from cdktf_cdktf_provider_azurerm.resource_group import ResourceGroup

from ailab_infra.iac_types import RegistryConfig
from ailab_infra.modules.private_endpoint.private_endpoint import (
    provision_private_endpoint,
)


def provision_registry(*, scope: Construct, cfg: RegistryConfig) -> ContainerRegistry:
    rg = ResourceGroup(
        scope, "rg", name=cfg.resource_group_name, location=cfg.location, tags=cfg.tags
    )

    registry = ContainerRegistry(
        scope,
        "registry",
        name=cfg.registry_name,
        resource_group_name=rg.name,
        location=cfg.location,
        sku=cfg.sku,
        admin_enabled=False,
        public_network_access_enabled=False,
        network_rule_bypass_option="AzureServices",
        tags=cfg.tags,
    )

    provision_private_endpoint(
        scope=scope,
        cfg=cfg.private_endpoint,
        target_id=registry.id,
        rg_name=rg.name,
        location=cfg.location,
        tags=cfg.tags,
    )

    TerraformOutput(scope, "resource_group", value=rg.name)
    TerraformOutput(scope, "registry_name", value=registry.name)
    TerraformOutput(scope, "registry_id", value=registry.id)
    TerraformOutput(scope, "registry_login_server", value=registry.login_server)
    return registry
