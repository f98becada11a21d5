"""
Customer-managed key encryption for the private storage account.

The resources below must reach Azure in this order:

1. Key Vault (existing, in its own resource group) is looked up by name.
2. The user-assigned identity is created (no dependencies).
3. The encryption key with its rotation policy is created in the vault.
4. The identity is granted "Key Vault Crypto Service Encryption User" on the vault.
5. The storage account is switched to `Microsoft.Keyvault` key source.

Steps 2 and 3 are ordered by references; 4 and 5 carry explicit
`depends_on` because nothing in their arguments points at the previous step.
Role assignments replicate asynchronously (commonly ~5 minutes): a successful
apply can still leave the account unable to unwrap its key until then.
"""

from __future__ import annotations

from constructs import Construct

from cdktf import Fn, TerraformOutput
from cdktf_cdktf_provider_azurerm.data_azurerm_key_vault import DataAzurermKeyVault
from cdktf_cdktf_provider_azurerm.key_vault_key import (
    KeyVaultKey,
    KeyVaultKeyRotationPolicy,
    KeyVaultKeyRotationPolicyAutomatic,
)
from cdktf_cdktf_provider_azurerm.role_assignment import RoleAssignment
from cdktf_cdktf_provider_azurerm.storage_account import StorageAccount
from cdktf_cdktf_provider_azurerm.storage_account_customer_managed_key import (
    StorageAccountCustomerManagedKeyA,
)
from cdktf_cdktf_provider_azurerm.user_assigned_identity import UserAssignedIdentity

from ailab_infra.iac_types import CmkConfig


CRYPTO_SERVICE_ENCRYPTION_USER = "Key Vault Crypto Service Encryption User"


def role_assignment_name(scope_id: str, principal_id: str, role: str) -> str:
    """Deterministic GUID for (scope, principal, role) so re-applies are no-ops."""
    return Fn.uuidv5("url", f"{scope_id}/{principal_id}/{role}")


def provision_cmk_identity(
    *, scope: Construct, cfg: CmkConfig, rg_name: str, location: str, tags: dict
) -> UserAssignedIdentity:
    identity = UserAssignedIdentity(
        scope,
        "cmkIdentity",
        name=cfg.identity_name,
        resource_group_name=rg_name,
        location=location,
        tags=tags,
    )
    TerraformOutput(scope, "cmk_identity_principal_id", value=identity.principal_id)
    TerraformOutput(scope, "cmk_identity_client_id", value=identity.client_id)
    return identity


def provision_cmk_encryption(
    *,
    scope: Construct,
    cfg: CmkConfig,
    identity: UserAssignedIdentity,
    storage_account: StorageAccount,
) -> StorageAccountCustomerManagedKeyA:
    """Declare steps 1, 3, 4 and 5 of the CMK flow for an identity created earlier."""
    kv = DataAzurermKeyVault(
        scope,
        "cmkKeyVault",
        name=cfg.key_vault_name,
        resource_group_name=cfg.key_vault_resource_group_name,
    )

    key = KeyVaultKey(
        scope,
        "cmkKey",
        name=cfg.key_name,
        key_vault_id=kv.id,
        key_type=cfg.key_type,
        key_size=cfg.key_size,
        key_opts=["wrapKey", "unwrapKey"],
        rotation_policy=KeyVaultKeyRotationPolicy(
            automatic=KeyVaultKeyRotationPolicyAutomatic(
                time_after_creation=cfg.rotation_interval,
            ),
            expire_after=cfg.expire_after,
            notify_before_expiry=cfg.notify_before_expiry,
        ),
    )

    grant = RoleAssignment(
        scope,
        "cmkRoleAssignment",
        name=role_assignment_name(
            kv.id, identity.principal_id, CRYPTO_SERVICE_ENCRYPTION_USER
        ),
        scope=kv.id,
        role_definition_name=CRYPTO_SERVICE_ENCRYPTION_USER,
        principal_id=identity.principal_id,
        principal_type="ServicePrincipal",
        depends_on=[key],
    )

    # No key_version: the account follows the versionless key across rotations
    cmk = StorageAccountCustomerManagedKeyA(
        scope,
        "cmk",
        storage_account_id=storage_account.id,
        key_vault_id=kv.id,
        key_name=key.name,
        user_assigned_identity_id=identity.id,
        depends_on=[grant],
    )

    TerraformOutput(scope, "cmk_key_vault_uri", value=kv.vault_uri)
    TerraformOutput(scope, "cmk_key_name", value=key.name)
    TerraformOutput(scope, "cmk_key_versionless_id", value=key.versionless_id)
    return cmk
