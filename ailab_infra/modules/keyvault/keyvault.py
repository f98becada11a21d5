"""
Key Vault module.

Creates Azure Key Vault with RBAC authorization, soft delete and purge
protection (both required before a storage account may use one of its keys),
reachable only through its private endpoint.
"""

from __future__ import annotations

from constructs import Construct

from cdktf import TerraformOutput
from cdktf_cdktf_provider_azurerm.data_azurerm_client_config import (
    DataAzurermClientConfig,
)
from cdktf_cdktf_provider_azurerm.key_vault import KeyVault, KeyVaultNetworkAcls
from cdktf_cdktf_provider_azurerm.resource_group import ResourceGroup

from ailab_infra.iac_types import KeyVaultConfig
from ailab_infra.modules.private_endpoint.private_endpoint import (
    provision_private_endpoint,
)


def provision_key_vault(
    *, scope: Construct, cfg: KeyVaultConfig, tenant_id: str = ""
) -> KeyVault:
    """Provision RG, vault and private endpoint; return the vault."""
    rg = ResourceGroup(
        scope, "rg", name=cfg.resource_group_name, location=cfg.location, tags=cfg.tags
    )

    if not tenant_id:
        tenant_id = DataAzurermClientConfig(scope, "clientConfig").tenant_id

    kv = KeyVault(
        scope,
        "keyVault",
        name=cfg.vault_name,
        location=cfg.location,
        resource_group_name=rg.name,
        tenant_id=tenant_id,
        sku_name=cfg.sku,
        soft_delete_retention_days=cfg.soft_delete_retention_days,
        purge_protection_enabled=cfg.purge_protection_enabled,
        rbac_authorization_enabled=True,
        public_network_access_enabled=False,
        network_acls=KeyVaultNetworkAcls(default_action="Deny", bypass="AzureServices"),
        tags=cfg.tags,
    )

    provision_private_endpoint(
        scope=scope,
        cfg=cfg.private_endpoint,
        target_id=kv.id,
        rg_name=rg.name,
        location=cfg.location,
        tags=cfg.tags,
    )

    TerraformOutput(scope, "resource_group", value=rg.name)
    TerraformOutput(scope, "key_vault_name", value=kv.name)
    TerraformOutput(scope, "key_vault_id", value=kv.id)
    TerraformOutput(scope, "key_vault_uri", value=kv.vault_uri)
    return kv
