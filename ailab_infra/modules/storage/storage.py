"""
Storage module for a private Azure Storage Account.

Provisions the resource group, a StorageV2 account with public network access
and shared keys disabled, a blob private endpoint and, when enabled, the
customer-managed key flow from `cmk.py`.
"""

from __future__ import annotations

from constructs import Construct

from cdktf import TerraformOutput, TerraformResourceLifecycle
from cdktf_cdktf_provider_azurerm.resource_group import ResourceGroup
from cdktf_cdktf_provider_azurerm.storage_account import (
    StorageAccount,
    StorageAccountBlobProperties,
    StorageAccountBlobPropertiesContainerDeleteRetentionPolicy,
    StorageAccountBlobPropertiesDeleteRetentionPolicy,
    StorageAccountIdentity,
    StorageAccountNetworkRules,
)

from ailab_infra.iac_types import StorageConfig
from ailab_infra.modules.private_endpoint.private_endpoint import (
    provision_private_endpoint,
)
from ailab_infra.modules.storage.cmk import (
    provision_cmk_encryption,
    provision_cmk_identity,
)


def provision_storage(*, scope: Construct, cfg: StorageConfig) -> StorageAccount:
    """Provision storage resources with private connectivity."""
    rg = ResourceGroup(
        scope, "rg", name=cfg.resource_group_name, location=cfg.location, tags=cfg.tags
    )

    # Standard_LRS -> ("Standard", "LRS")
    account_tier, account_replication_type = cfg.sku.split("_", 1)

    identity = None
    if cfg.cmk:
        identity = provision_cmk_identity(
            scope=scope,
            cfg=cfg.cmk,
            rg_name=rg.name,
            location=cfg.location,
            tags=cfg.tags,
        )

    storage_account = StorageAccount(
        scope,
        "storageAccount",
        name=cfg.account_name,
        resource_group_name=rg.name,
        location=cfg.location,
        account_kind="StorageV2",
        account_tier=account_tier,
        account_replication_type=account_replication_type,
        access_tier=cfg.access_tier,
        https_traffic_only_enabled=True,
        min_tls_version="TLS1_2",
        shared_access_key_enabled=False,
        default_to_oauth_authentication=True,
        public_network_access_enabled=False,
        allow_nested_items_to_be_public=False,
        network_rules=StorageAccountNetworkRules(
            default_action="Deny",
            bypass=["AzureServices"],
        ),
        blob_properties=StorageAccountBlobProperties(
            versioning_enabled=cfg.enable_versioning,
            delete_retention_policy=StorageAccountBlobPropertiesDeleteRetentionPolicy(
                days=cfg.blob_soft_delete_days,
            ),
            container_delete_retention_policy=StorageAccountBlobPropertiesContainerDeleteRetentionPolicy(
                days=cfg.container_soft_delete_days,
            ),
        ),
        identity=(
            StorageAccountIdentity(type="UserAssigned", identity_ids=[identity.id])
            if identity
            else None
        ),
        # The separate CMK resource owns the account's encryption settings
        lifecycle=(
            TerraformResourceLifecycle(ignore_changes=["customer_managed_key"])
            if identity
            else None
        ),
        tags=cfg.tags,
    )

    if cfg.cmk and identity:
        provision_cmk_encryption(
            scope=scope,
            cfg=cfg.cmk,
            identity=identity,
            storage_account=storage_account,
        )

    provision_private_endpoint(
        scope=scope,
        cfg=cfg.private_endpoint,
        target_id=storage_account.id,
        rg_name=rg.name,
        location=cfg.location,
        tags=cfg.tags,
    )

    TerraformOutput(scope, "resource_group", value=rg.name)
    TerraformOutput(scope, "storage_account_name", value=storage_account.name)
    TerraformOutput(scope, "storage_account_id", value=storage_account.id)
    TerraformOutput(
        scope, "storage_blob_endpoint", value=storage_account.primary_blob_endpoint
    )
    return storage_account
