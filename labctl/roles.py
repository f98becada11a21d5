"""
Data-plane RBAC grants on the lab's private resources.

Assignments are idempotent: an existing (principal, role, scope) triple is
reported and left alone. New grants can take several minutes to propagate.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .utils import CmdError, az, az_json, az_tsv


logger = logging.getLogger(__name__)

KEYVAULT_ROLES: Dict[str, str] = {
    "secrets-officer": "b86a8fe4-44ce-4948-aee5-eccb2c155cd7",
    "secrets-user": "4633458b-17de-408a-b874-0445c86b69e6",
    "administrator": "00482a5a-887f-4fb3-b363-3b7fe8e74483",
    "crypto-officer": "14b46e9e-c2b7-41b4-b07b-48a6ebf60603",
    "certificates-officer": "a4417e6f-fecd-4de8-b567-7b0420556985",
}

STORAGE_ROLES = (
    "Storage Blob Data Contributor",
    "Storage Blob Data Reader",
    "Storage Blob Data Owner",
)

REGISTRY_ROLES = ("AcrPull", "AcrPush")

TARGET_ROLES = {
    "keyvault": tuple(KEYVAULT_ROLES),
    "storage": STORAGE_ROLES,
    "registry": REGISTRY_ROLES,
}

PRINCIPAL_TYPES = ("User", "Group", "ServicePrincipal")


def resolve_role(target: str, role: str) -> str:
    """Role name or definition id accepted by `az role assignment create --role`."""
    if target not in TARGET_ROLES:
        raise ValueError(f"Unknown grant target: {target}")
    if target == "keyvault":
        if role in KEYVAULT_ROLES:
            return KEYVAULT_ROLES[role]
        if role in KEYVAULT_ROLES.values():
            return role
    elif role in TARGET_ROLES[target]:
        return role
    allowed = ", ".join(TARGET_ROLES[target])
    raise ValueError(f"Role {role!r} is not valid for {target} (choose from: {allowed})")


def current_user_object_id() -> str:
    oid = az_tsv(["ad", "signed-in-user", "show", "--query", "id"])
    if not oid:
        raise CmdError("Could not resolve the signed-in user (run 'az login')")
    return oid


def signed_in_principal_id() -> str:
    """Object id of whoever az is logged in as, user or service principal."""
    if az_tsv(["account", "show", "--query", "user.type"]) == "servicePrincipal":
        app_id = az_tsv(["account", "show", "--query", "user.name"])
        oid = az_tsv(["ad", "sp", "show", "--id", app_id, "--query", "id"])
        if not oid:
            raise CmdError(f"Service principal not found: {app_id}")
        return oid
    return current_user_object_id()


def user_object_id(upn: str) -> str:
    oid = az_tsv(["ad", "user", "show", "--id", upn, "--query", "id"])
    if not oid:
        raise CmdError(f"User not found: {upn}")
    return oid


def apim_principal_id(resource_group: str, name: str) -> str:
    oid = az_tsv(["apim", "show", "-g", resource_group, "-n", name, "--query", "identity.principalId"])
    if not oid:
        raise CmdError(f"API Management {name} has no system-assigned identity")
    return oid


def existing_assignments(
    principal_id: str, role: str, scope: str, include_inherited: bool = False
) -> List[dict]:
    args = [
        "role",
        "assignment",
        "list",
        "--assignee",
        principal_id,
        "--role",
        role,
        "--scope",
        scope,
    ]
    if include_inherited:
        args.append("--include-inherited")
    return az_json(args) or []


def grant_role(
    *,
    principal_id: str,
    role: str,
    scope: str,
    principal_type: Optional[str] = None,
) -> bool:
    """Create the assignment unless present. Returns True when one was created."""
    if existing_assignments(principal_id, role, scope):
        logger.info("Role %s already assigned to %s", role, principal_id)
        return False
    args = [
        "role",
        "assignment",
        "create",
        "--assignee-object-id",
        principal_id,
        "--role",
        role,
        "--scope",
        scope,
    ]
    if principal_type:
        args += ["--assignee-principal-type", principal_type]
    az(args)
    logger.info("Assigned %s to %s on %s", role, principal_id, scope)
    logger.warning("RBAC propagation can take up to 10 minutes before data-plane access works")
    return True
