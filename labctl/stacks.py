"""
Deployment stages known to labctl: prerequisites, target durations and the
private FQDN each one exposes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from ailab_infra.utils.config_loader import STACKS


@dataclass(frozen=True)
class StackInfo:
    name: str
    resource_group: str
    requires: Tuple[str, ...]
    target_seconds: int
    # terraform output holding the resource name, and the private DNS suffix
    fqdn_output: Optional[str] = None
    fqdn_suffix: Optional[str] = None

    def fqdn(self, outputs: Dict[str, object]) -> Optional[str]:
        if not self.fqdn_output:
            return None
        name = outputs.get(self.fqdn_output)
        return f"{name}{self.fqdn_suffix}" if name else None


STACK_INFO: Dict[str, StackInfo] = {
    "core": StackInfo("core", "rg-ai-core", (), 45 * 60),
    "keyvault": StackInfo(
        "keyvault", "rg-ai-keyvault", ("core",), 5 * 60, "key_vault_name", ".vault.azure.net"
    ),
    "storage": StackInfo(
        "storage",
        "rg-ai-storage",
        ("core", "keyvault"),
        3 * 60,
        "storage_account_name",
        ".blob.core.windows.net",
    ),
    "registry": StackInfo(
        "registry", "rg-ai-registry", ("core",), 10 * 60, "registry_name", ".azurecr.io"
    ),
    "apim": StackInfo("apim", "rg-ai-apim", ("core",), 25 * 60),
}

assert tuple(STACK_INFO) == STACKS


def get_stack(name: str) -> StackInfo:
    try:
        return STACK_INFO[name]
    except KeyError:
        raise ValueError(f"Unknown stack: {name} (expected one of {', '.join(STACKS)})") from None
