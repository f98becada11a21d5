"""
Azure stack config helpers.

Shared by every stage: the provider block each stack declares and a plain
dict view of the typed config for diagnostics or outputs.
"""

import json
from dataclasses import asdict, is_dataclass
from typing import Any, Dict

from constructs import Construct

from cdktf import TerraformOutput
from cdktf_cdktf_provider_azurerm.provider import (
    AzurermProvider,
    AzurermProviderFeatures,
)


def configure_provider(
    scope: Construct, subscription_id: str, storage_use_azuread: bool = False
) -> AzurermProvider:
    """azurerm provider for one stack.

    `storage_use_azuread` must be on wherever a storage account has shared key
    access disabled, otherwise the provider's data-plane calls are rejected.
    """
    return AzurermProvider(
        scope,
        "azurerm",
        features=[AzurermProviderFeatures()],
        subscription_id=subscription_id,
        storage_use_azuread=storage_use_azuread,
    )


def synth_config_json(config: Any) -> Dict[str, Any]:
    """Convert dataclasses to plain dict for diagnostics or outputs."""
    if not is_dataclass(config):
        raise TypeError(f"expected a config dataclass, got {type(config).__name__}")
    return asdict(config)


def export_config(scope: Construct, config: Any) -> TerraformOutput:
    """Surface a copy of the config used for traceability."""
    return TerraformOutput(
        scope, "config_json", value=json.dumps(synth_config_json(config), sort_keys=True)
    )
