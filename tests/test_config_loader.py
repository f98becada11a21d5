"""Unit tests for parameter file loading and typed config construction."""
from pathlib import Path

import pytest

from ailab_infra.iac_types import StorageConfig
from ailab_infra.utils.config_loader import (
    PRIVATE_DNS_ZONES,
    REQUIRED_TAGS,
    STACKS,
    build_tags,
    load_parameters,
    load_stack_config,
    parameter_file_path,
    parse_parameter_document,
)
from ailab_infra.utils.validation import ConfigError


class TestParameterDocuments:
    def test_extracts_values(self):
        doc = '{"parameters": {"location": {"value": "eastus2"}, "enableCmk": {"value": false}}}'
        assert parse_parameter_document(doc) == {"location": "eastus2", "enableCmk": False}

    def test_rejects_key_vault_references(self):
        doc = '{"parameters": {"publisherEmail": {"reference": {"keyVault": {"id": "x"}}}}}'
        with pytest.raises(ConfigError, match="Key Vault references are not supported"):
            parse_parameter_document(doc)

    def test_rejects_invalid_json(self):
        with pytest.raises(ConfigError, match="invalid JSON"):
            parse_parameter_document("{not json")

    def test_requires_parameters_object(self):
        with pytest.raises(ConfigError, match="no 'parameters' object"):
            parse_parameter_document('{"contentVersion": "1.0.0.0"}')

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_parameters(tmp_path / "nope.json", "core")

    def test_unknown_stack(self, write_params):
        with pytest.raises(ValueError, match="Unknown stack"):
            load_parameters(write_params({}), "bastion")


class TestParameterFilePath:
    def test_default_location(self, repo_root):
        path = parameter_file_path(repo_root=repo_root, stack="storage", env={})
        assert path == (repo_root / "parameters" / "storage.parameters.json").resolve()

    def test_env_override(self, repo_root):
        env = {"STORAGE_PARAMETER_FILE": "custom/storage.json"}
        path = parameter_file_path(repo_root=repo_root, stack="storage", env=env)
        assert path == (repo_root / "custom" / "storage.json").resolve()

    def test_blank_override_ignored(self, repo_root):
        env = {"CORE_PARAMETER_FILE": "  "}
        path = parameter_file_path(repo_root=repo_root, stack="core", env=env)
        assert path.name == "core.parameters.json"


class TestTags:
    def test_required_tags_present(self):
        tags = build_tags("storage", "dev", {})
        assert set(REQUIRED_TAGS) <= set(tags)
        assert tags["component"] == "storage"
        assert tags["deployedBy"] == "labctl"

    def test_extra_tags_override(self):
        tags = build_tags("core", "dev", {"owner": "platform-team", "environment": "lab"})
        assert tags["owner"] == "platform-team"
        assert tags["environment"] == "lab"


class TestRepositoryParameterFiles:
    """The checked-in parameter files must load for every stack."""

    @pytest.mark.parametrize("stack", STACKS)
    def test_loads(self, stack, repo_root, lab_env):
        config = load_stack_config(stack, repo_root=repo_root, env=lab_env)
        assert config.resource_group_name
        assert set(REQUIRED_TAGS) <= set(config.tags)

    def test_core_defaults(self, repo_root, lab_env):
        core = load_stack_config("core", repo_root=repo_root, env=lab_env)
        assert core.hub.bgp_asn == 65515
        assert core.hub.address_prefix == "10.0.0.0/23"
        assert core.shared_services.address_space == ["10.1.0.0/24"]
        assert sorted(core.dns_resolver.zones) == sorted(PRIVATE_DNS_ZONES.values())

    def test_storage_naming(self, repo_root, lab_env):
        storage = load_stack_config("storage", repo_root=repo_root, env=lab_env)
        assert isinstance(storage, StorageConfig)
        assert storage.account_name == "stailab001"
        assert storage.private_endpoint.name == "pe-stailab001-blob"
        assert storage.private_endpoint.dns_zone_name == "privatelink.blob.core.windows.net"


class TestStorageCmk:
    def test_vault_from_environment(self, write_params):
        path = write_params({"storageNameSuffix": "001"})
        cfg = load_stack_config(
            "storage", repo_root=Path("."), env={"KEY_VAULT_NAME": "kv-ai-lab-0115"}, path=path
        )
        assert cfg.cmk.key_vault_name == "kv-ai-lab-0115"
        assert cfg.cmk.identity_name == "id-stailab001-cmk"
        assert cfg.cmk.rotation_interval == "P90D"

    def test_explicit_vault_wins(self, write_params):
        path = write_params({"storageNameSuffix": "001", "keyVaultName": "kv-explicit"})
        cfg = load_stack_config(
            "storage", repo_root=Path("."), env={"KEY_VAULT_NAME": "kv-env"}, path=path
        )
        assert cfg.cmk.key_vault_name == "kv-explicit"

    def test_vault_required_when_cmk_enabled(self, write_params):
        path = write_params({"storageNameSuffix": "001"})
        with pytest.raises(ConfigError, match="KEY_VAULT_NAME"):
            load_stack_config("storage", repo_root=Path("."), env={}, path=path)

    def test_cmk_disabled(self, write_params):
        path = write_params({"storageNameSuffix": "001", "enableCmk": False})
        cfg = load_stack_config("storage", repo_root=Path("."), env={}, path=path)
        assert cfg.cmk is None

    def test_bad_rotation_duration(self, write_params):
        path = write_params({"storageNameSuffix": "001", "keyRotationInterval": "90 days"})
        with pytest.raises(ConfigError, match="keyRotationInterval"):
            load_stack_config("storage", repo_root=Path("."), env={"KEY_VAULT_NAME": "kv"}, path=path)

    def test_storage_suffix_pattern(self, write_params):
        path = write_params({"storageNameSuffix": "Has-Dash", "enableCmk": False})
        with pytest.raises(ConfigError, match="storageNameSuffix"):
            load_stack_config("storage", repo_root=Path("."), env={}, path=path)


class TestOtherStacks:
    def test_registry_requires_premium(self, write_params):
        path = write_params({"registryNameSuffix": "0115", "skuName": "Standard"})
        with pytest.raises(ConfigError, match="Premium"):
            load_stack_config("registry", repo_root=Path("."), env={}, path=path)

    def test_apim_publisher_email_required(self, write_params):
        path = write_params({"apimName": "apim-x"})
        with pytest.raises(ConfigError, match="publisherEmail"):
            load_stack_config("apim", repo_root=Path("."), env={}, path=path)

    def test_apim_network(self, write_params):
        path = write_params({"publisherEmail": "ops@example.com", "enableStorageApi": False})
        cfg = load_stack_config("apim", repo_root=Path("."), env={}, path=path)
        assert cfg.network.resource_group_name == "rg-ai-core"
        assert cfg.network.subnet_name == "snet-apim-integration"
        assert cfg.virtual_network_type == "External"

    def test_core_bgp_asn_fixed(self, write_params):
        path = write_params({"bgpAsn": 65000})
        with pytest.raises(ConfigError, match="bgpAsn"):
            load_stack_config("core", repo_root=Path("."), env={}, path=path)

    def test_keyvault_retention_bounds(self, write_params):
        path = write_params({"keyVaultNameSuffix": "0115", "softDeleteRetentionDays": 5})
        with pytest.raises(ConfigError, match="softDeleteRetentionDays"):
            load_stack_config("keyvault", repo_root=Path("."), env={}, path=path)

    def test_apim_standard_v2_cannot_be_internal(self, write_params):
        path = write_params(
            {"publisherEmail": "ops@example.com", "enableStorageApi": False, "virtualNetworkType": "Internal"}
        )
        with pytest.raises(ConfigError, match="Internal is not supported by StandardV2_1"):
            load_stack_config("apim", repo_root=Path("."), env={}, path=path)

    def test_apim_developer_can_be_internal(self, write_params):
        path = write_params(
            {
                "publisherEmail": "ops@example.com",
                "enableStorageApi": False,
                "skuName": "Developer_1",
                "virtualNetworkType": "Internal",
            }
        )
        cfg = load_stack_config("apim", repo_root=Path("."), env={}, path=path)
        assert cfg.virtual_network_type == "Internal"


class TestStorageApiConfig:
    def test_repository_parameters(self, repo_root, lab_env):
        cfg = load_stack_config("apim", repo_root=repo_root, env=lab_env)
        api = cfg.storage_api
        assert api.storage_account_name == "stailab001"
        assert api.container_name == "files"
        assert api.path == "storage"
        assert api.audience == "api://ai-lab-storage-api"
        assert api.tenant_id == ""

    def test_audience_required(self, write_params):
        path = write_params({"publisherEmail": "ops@example.com"})
        with pytest.raises(ConfigError, match="jwtAudience"):
            load_stack_config("apim", repo_root=Path("."), env={}, path=path)

    def test_disabled(self, write_params):
        path = write_params({"publisherEmail": "ops@example.com", "enableStorageApi": False})
        assert load_stack_config("apim", repo_root=Path("."), env={}, path=path).storage_api is None


class TestKeyLifetimes:
    def test_expiry_must_outlast_rotation(self, write_params):
        path = write_params(
            {"storageNameSuffix": "001", "keyRotationInterval": "P90D", "keyExpireAfter": "P3M"}
        )
        with pytest.raises(ConfigError, match="keyExpireAfter: 'P3M' must be longer than keyRotationInterval"):
            load_stack_config("storage", repo_root=Path("."), env={"KEY_VAULT_NAME": "kv"}, path=path)

    def test_longer_expiry_accepted(self, write_params):
        path = write_params(
            {"storageNameSuffix": "001", "keyRotationInterval": "P1Y", "keyExpireAfter": "P2Y"}
        )
        cfg = load_stack_config("storage", repo_root=Path("."), env={"KEY_VAULT_NAME": "kv"}, path=path)
        assert cfg.cmk.expire_after == "P2Y"
