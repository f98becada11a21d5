"""
CDKTF entrypoint for the AI lab hub-spoke infrastructure.

One TerraformStack per deployment stage, each with its own state and its own
parameter file: core -> keyvault -> storage / registry / apim.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Type

from constructs import Construct
from cdktf import App, TerraformOutput, TerraformStack

from ailab_infra.iac_types import (
    ApimConfig,
    CoreConfig,
    KeyVaultConfig,
    RegistryConfig,
    StorageConfig,
)
from ailab_infra.modules.apim.apim import provision_apim
from ailab_infra.modules.dns.dns import (
    provision_dns_resolver,
    provision_private_dns_zones,
)
from ailab_infra.modules.keyvault.keyvault import provision_key_vault
from ailab_infra.modules.network.network import (
    provision_hub,
    provision_shared_services,
)
from ailab_infra.modules.registry.registry import provision_registry
from ailab_infra.modules.storage.storage import provision_storage
from ailab_infra.stacks.azure_stack import configure_provider, export_config
from ailab_infra.utils.config_loader import STACKS, load_stack_config
from ailab_infra.utils.validation import (
    ConfigError,
    format_missing_env_message,
    missing_env,
)


class CoreStack(TerraformStack):
    """vWAN hub, VPN gateway, shared-services VNet, private DNS and resolver."""

    def __init__(
        self, scope: Construct, id: str, config: CoreConfig, subscription_id: str
    ) -> None:
        super().__init__(scope, id)
        configure_provider(self, subscription_id)

        rg, _vwan, vhub, _gw = provision_hub(scope=self, cfg=config)
        vnet, _subnet_pe, subnet_dns = provision_shared_services(
            scope=self, cfg=config, rg=rg, vhub=vhub
        )
        provision_private_dns_zones(scope=self, cfg=config, rg=rg, vnet=vnet)
        provision_dns_resolver(
            scope=self, cfg=config, rg=rg, vnet=vnet, subnet_inbound=subnet_dns
        )
        export_config(self, config)


class KeyVaultStack(TerraformStack):
    def __init__(
        self, scope: Construct, id: str, config: KeyVaultConfig, subscription_id: str
    ) -> None:
        super().__init__(scope, id)
        configure_provider(self, subscription_id)
        provision_key_vault(
            scope=self, cfg=config, tenant_id=os.getenv("ARM_TENANT_ID", "")
        )
        export_config(self, config)


class StorageStack(TerraformStack):
    def __init__(
        self, scope: Construct, id: str, config: StorageConfig, subscription_id: str
    ) -> None:
        super().__init__(scope, id)
        # Shared keys are disabled on the account
        configure_provider(self, subscription_id, storage_use_azuread=True)
        provision_storage(scope=self, cfg=config)
        TerraformOutput(self, "cmk_enabled", value=config.cmk is not None)
        export_config(self, config)


class RegistryStack(TerraformStack):
    def __init__(
        self, scope: Construct, id: str, config: RegistryConfig, subscription_id: str
    ) -> None:
        super().__init__(scope, id)
        configure_provider(self, subscription_id)
        provision_registry(scope=self, cfg=config)
        export_config(self, config)


class ApimStack(TerraformStack):
    def __init__(
        self, scope: Construct, id: str, config: ApimConfig, subscription_id: str
    ) -> None:
        super().__init__(scope, id)
        configure_provider(self, subscription_id)
        provision_apim(scope=self, cfg=config)
        export_config(self, config)


STACK_CLASSES: Dict[str, Type[TerraformStack]] = {
    "core": CoreStack,
    "keyvault": KeyVaultStack,
    "storage": StorageStack,
    "registry": RegistryStack,
    "apim": ApimStack,
}


def selected_stacks(env: Mapping[str, str]) -> Iterable[str]:
    """Stacks named in LABCTL_STACKS (comma separated), default all."""
    raw = env.get("LABCTL_STACKS", "").strip()
    if not raw:
        return STACKS
    names = [n.strip() for n in raw.split(",") if n.strip()]
    unknown = [n for n in names if n not in STACK_CLASSES]
    if unknown:
        raise ValueError(f"Unknown stack(s) in LABCTL_STACKS: {', '.join(unknown)}")
    return names


def build_app(
    *,
    repo_root: Path,
    env: Mapping[str, str],
    stacks: Optional[Iterable[str]] = None,
    app: Optional[App] = None,
) -> App:
    app = app or App()
    subscription_id = env.get("ARM_SUBSCRIPTION_ID", "")
    for name in stacks or selected_stacks(env):
        config = load_stack_config(name, repo_root=repo_root, env=env)
        STACK_CLASSES[name](app, name, config, subscription_id)
    return app


def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]

    # Preflight: ensure required env vars are present before synthesizing
    missing = missing_env(env=os.environ, keys=["ARM_SUBSCRIPTION_ID"])
    if missing:
        print(format_missing_env_message(missing), file=sys.stderr)
        sys.exit(2)

    try:
        app = build_app(repo_root=repo_root, env=os.environ)
    except ConfigError as ex:
        print("Parameter validation failed:", file=sys.stderr)
        for problem in ex.problems:
            print(f"  - {problem}", file=sys.stderr)
        sys.exit(1)
    except (ValueError, FileNotFoundError) as ex:
        # Surface a concise, friendly message instead of a long traceback
        print(f"Error: {ex}", file=sys.stderr)
        sys.exit(1)

    try:
        app.synth()
    except Exception as ex:  # noqa: BLE001 - present actionable error
        print("Synthesis failed.", file=sys.stderr)
        print(str(ex), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
