"""CLI flow tests; every external command is mocked."""
from unittest.mock import MagicMock, patch

import pytest
import requests

from labctl import checks, cli
from labctl.utils import CmdError
from labctl.whatif import PlanSummary


SCOPE = "/subscriptions/s/resourceGroups/rg-ai-keyvault/providers/Microsoft.KeyVault/vaults/kv-ai-lab-0115"

CMK_READY_VAULT = {
    "properties": {
        "enableRbacAuthorization": True,
        "publicNetworkAccess": "Disabled",
        "enableSoftDelete": True,
        "enablePurgeProtection": True,
    }
}


def parse(*argv):
    return cli.build_parser().parse_args(list(argv))


@pytest.fixture
def clean_env(monkeypatch):
    monkeypatch.setenv("ARM_SUBSCRIPTION_ID", "00000000-0000-0000-0000-000000000000")
    monkeypatch.delenv("KEY_VAULT_NAME", raising=False)
    for stack in ("CORE", "KEYVAULT", "STORAGE", "REGISTRY", "APIM"):
        monkeypatch.delenv(f"{stack}_PARAMETER_FILE", raising=False)


class TestStackEnv:
    def test_limits_synth_to_stack(self):
        env = cli.stack_env("storage", base={"PATH": "/bin"})
        assert env == {"PATH": "/bin", "LABCTL_STACKS": "storage"}

    def test_parameter_file_override(self, tmp_path):
        path = tmp_path / "storage.json"
        env = cli.stack_env("storage", str(path), base={})
        assert env["STORAGE_PARAMETER_FILE"] == str(path.resolve())


class TestPrerequisites:
    def _az_tsv(self, args):
        if args[:3] == ["storage", "account", "check-name"]:
            return "true"
        if args[:2] == ["keyvault", "list"]:
            return "kv-ai-lab-0115"
        return ""

    @patch("labctl.cli.check_vault_data_plane")
    @patch("labctl.cli.az_json", return_value=CMK_READY_VAULT)
    @patch("labctl.cli.az", return_value="true")
    @patch("labctl.cli.az_ok", return_value=True)
    def test_storage_discovers_key_vault(self, _ok, mock_az, _json, mock_data_plane, clean_env):
        env = cli.stack_env("storage")
        with patch("labctl.cli.az_tsv", side_effect=self._az_tsv):
            cli.check_prerequisites("storage", env)
        mock_data_plane.assert_called_once_with("kv-ai-lab-0115")
        assert env["KEY_VAULT_NAME"] == "kv-ai-lab-0115"
        checked_groups = [c.args[0][3] for c in mock_az.call_args_list if c.args[0][:2] == ["group", "exists"]]
        assert checked_groups == ["rg-ai-core", "rg-ai-keyvault"]

    @patch("labctl.cli.az_json")
    @patch("labctl.cli.az", return_value="true")
    @patch("labctl.cli.az_ok", return_value=True)
    def test_vault_without_purge_protection_blocks_storage(self, _ok, _az, mock_json, clean_env):
        mock_json.return_value = {"properties": dict(CMK_READY_VAULT["properties"], enablePurgeProtection=False)}
        with patch("labctl.cli.az_tsv", side_effect=self._az_tsv):
            with pytest.raises(CmdError, match="purge protection"):
                cli.check_prerequisites("storage", cli.stack_env("storage"))

    @patch("labctl.cli.az", return_value="false")
    @patch("labctl.cli.az_ok", return_value=True)
    def test_missing_dependency(self, _ok, _az, clean_env):
        with pytest.raises(CmdError, match="deploy the core stack first"):
            cli.check_prerequisites("registry", cli.stack_env("registry"))

    @patch("labctl.cli.az_ok", return_value=False)
    def test_not_logged_in(self, _ok, clean_env):
        with pytest.raises(CmdError, match="az login"):
            cli.check_prerequisites("core", cli.stack_env("core"))

    @patch("labctl.cli.az_ok", return_value=False)
    @patch("labctl.cli.az_tsv", return_value="false")
    def test_storage_name_taken(self, _tsv, _ok):
        params = {"storageNameSuffix": "001", "resourceGroupName": "rg-ai-storage"}
        with pytest.raises(CmdError, match="taken globally"):
            cli.check_storage_name(params)


@patch("labctl.cli.az_tsv", return_value=SCOPE)
@patch("labctl.cli.signed_in_principal_id", return_value="oid-1")
class TestVaultDataPlane:
    """The CMK key is created through the vault's private endpoint."""

    @patch("labctl.cli.existing_assignments", return_value=[{"id": "a"}])
    @patch("labctl.cli.resolve_host", return_value=["10.1.0.5"])
    def test_private_and_authorized(self, _resolve, mock_assignments, _principal, _tsv):
        cli.check_vault_data_plane("kv-ai-lab-0115")
        principal, role, scope = mock_assignments.call_args[0]
        assert (principal, scope) == ("oid-1", SCOPE)
        assert role == cli.KEYVAULT_ROLES["crypto-officer"]
        assert mock_assignments.call_args[1] == {"include_inherited": True}

    @patch("labctl.cli.existing_assignments")
    @patch("labctl.cli.resolve_host", return_value=["52.168.1.1"])
    def test_public_answer_blocks_deploy(self, _resolve, mock_assignments, _principal, _tsv):
        with pytest.raises(CmdError, match="not reachable over its private endpoint"):
            cli.check_vault_data_plane("kv-ai-lab-0115")
        mock_assignments.assert_not_called()

    @patch("labctl.cli.resolve_host", return_value=[])
    def test_unresolvable_vault_blocks_deploy(self, _resolve, _principal, _tsv):
        with pytest.raises(CmdError, match="connect the VPN"):
            cli.check_vault_data_plane("kv-ai-lab-0115")

    @patch("labctl.cli.existing_assignments", side_effect=[[], [{"id": "admin"}]])
    @patch("labctl.cli.resolve_host", return_value=["10.1.0.5"])
    def test_administrator_role_suffices(self, _resolve, mock_assignments, _principal, _tsv):
        cli.check_vault_data_plane("kv-ai-lab-0115")
        assert mock_assignments.call_count == 2

    @patch("labctl.cli.existing_assignments", return_value=[])
    @patch("labctl.cli.resolve_host", return_value=["10.1.0.5"])
    def test_missing_crypto_role(self, _resolve, _assignments, _principal, _tsv):
        with pytest.raises(CmdError, match="grant-role keyvault --role crypto-officer"):
            cli.check_vault_data_plane("kv-ai-lab-0115")


@patch("labctl.cli.terraform_outputs", return_value={"storage_account_name": "stailab001", "cmk_enabled": True})
@patch("labctl.cli.terraform")
@patch("labctl.cli.plan")
@patch("labctl.cli.synth")
@patch("labctl.cli.check_prerequisites")
class TestDeploy:
    def test_applies_reviewed_plan(self, _pre, mock_synth, mock_plan, mock_tf, _out, clean_env):
        mock_plan.return_value = PlanSummary(create=5)
        with patch("labctl.cli.confirm", return_value=True) as mock_confirm:
            code = cli.deploy(parse("deploy", "storage"))
        assert code == 0
        mock_confirm.assert_called_once()
        assert mock_synth.call_args[0][1]["LABCTL_STACKS"] == "storage"
        mock_tf.assert_called_once()
        assert mock_tf.call_args[0][1] == ["apply", "-input=false", cli.PLAN_FILE]

    def test_declined_confirmation(self, _pre, _synth, mock_plan, mock_tf, _out, clean_env):
        mock_plan.return_value = PlanSummary(update=1)
        with patch("labctl.cli.confirm", return_value=False):
            assert cli.deploy(parse("deploy", "core")) == 0
        mock_tf.assert_not_called()

    def test_what_if_only(self, _pre, _synth, mock_plan, mock_tf, _out, clean_env):
        mock_plan.return_value = PlanSummary(create=1)
        assert cli.deploy(parse("deploy", "core", "--what-if")) == 0
        mock_tf.assert_not_called()

    def test_prerequisite_failure_exit_code(self, mock_pre, _synth, _plan, _tf, _out, clean_env):
        mock_pre.side_effect = CmdError("Resource group rg-ai-core not found")
        with pytest.raises(cli.PhaseFailed) as exc:
            cli.deploy(parse("deploy", "registry", "--auto-approve"))
        assert exc.value.code == cli.EXIT_PREREQ

    def test_plan_failure_exit_code(self, _pre, _synth, mock_plan, _tf, _out, clean_env):
        mock_plan.side_effect = CmdError("terraform plan failed")
        with pytest.raises(cli.PhaseFailed) as exc:
            cli.deploy(parse("deploy", "core", "--auto-approve"))
        assert exc.value.code == cli.EXIT_WHATIF

    def test_apply_failure_exit_code(self, _pre, _synth, mock_plan, mock_tf, _out, clean_env):
        mock_plan.return_value = PlanSummary(create=1)
        mock_tf.side_effect = CmdError("403 Forbidden")
        with pytest.raises(cli.PhaseFailed) as exc:
            cli.deploy(parse("deploy", "storage", "--auto-approve"))
        assert exc.value.code == cli.EXIT_DEPLOY


@patch("labctl.cli.synth")
@patch("labctl.cli.check_prerequisites")
class TestWhatIf:
    def test_idempotent_run(self, _pre, _synth, clean_env):
        with patch("labctl.cli.plan", return_value=PlanSummary(no_op=12)):
            assert cli.what_if(parse("what-if", "storage", "--idempotent")) == 0

    def test_drift_fails_idempotency(self, _pre, _synth, clean_env):
        with patch("labctl.cli.plan", return_value=PlanSummary(update=1, no_op=11)):
            assert cli.what_if(parse("what-if", "storage", "--idempotent")) == cli.EXIT_WHATIF

    def test_changes_allowed_without_flag(self, _pre, _synth, clean_env):
        with patch("labctl.cli.plan", return_value=PlanSummary(create=3)):
            assert cli.what_if(parse("what-if", "storage")) == 0


class TestValidate:
    @patch("labctl.cli.synth")
    def test_parameters_only(self, mock_synth, clean_env):
        assert cli.validate(parse("validate", "storage")) == 0
        mock_synth.assert_called_once()

    @patch("labctl.cli.synth")
    def test_invalid_parameters(self, mock_synth, write_params, clean_env):
        path = write_params({"registryNameSuffix": "0115", "skuName": "Basic"})
        with pytest.raises(cli.PhaseFailed) as exc:
            cli.validate(parse("validate", "registry", "-p", str(path)))
        assert exc.value.code == cli.EXIT_VALIDATE
        mock_synth.assert_not_called()

    @patch("labctl.cli.ensure_logged_in")
    @patch("labctl.cli.synth")
    def test_deployed_failures(self, _synth, _login, clean_env, monkeypatch):
        monkeypatch.setenv("KEY_VAULT_NAME", "kv-ai-lab-0115")
        failing = [checks.CheckResult("storage public network access", checks.FAIL, "Enabled")]
        with patch("labctl.cli.deployed_checks", return_value=failing):
            assert cli.validate(parse("validate", "storage", "--deployed")) == cli.EXIT_VALIDATE


class TestDeployedChecks:
    ACCOUNT = {
        "publicNetworkAccess": "Disabled",
        "allowSharedKeyAccess": False,
        "allowBlobPublicAccess": False,
        "encryption": {
            "keySource": "Microsoft.Keyvault",
            "keyVaultProperties": {"keyName": "storage-cmk", "keyVaultUri": "https://kv-ai-lab-0115.vault.azure.net/"},
            "encryptionIdentity": {"encryptionUserAssignedIdentity": "/id/id-stailab001-cmk"},
        },
        "tags": {"project": "ai-lab", "environment": "dev", "component": "storage", "deployedBy": "labctl"},
    }
    ENDPOINT = {
        "privateLinkServiceConnections": [{"privateLinkServiceConnectionState": {"status": "Approved"}}],
        "customDnsConfigs": [{"ipAddresses": ["10.1.0.4"]}],
    }

    def _az_json(self, args):
        if args[:3] == ["storage", "account", "show"]:
            return self.ACCOUNT
        if args[:3] == ["network", "private-endpoint", "show"]:
            assert args[-1] == "pe-stailab001-blob"
            return self.ENDPOINT
        raise AssertionError(args)

    @patch("labctl.cli.az_tsv", return_value="https://kv-ai-lab-0115.vault.azure.net/")
    def test_storage_with_cmk(self, _tsv, lab_env):
        with patch("labctl.cli.az_json", side_effect=self._az_json):
            results = cli.deployed_checks("storage", lab_env)
        assert checks.all_passed(results)
        names = {r.name for r in results}
        assert {"cmk key source", "private endpoint connection", "tag project"} <= names


class TestDestroy:
    @patch("labctl.cli.az")
    @patch("labctl.cli.terraform_outputs", return_value={"key_vault_name": "kv-ai-lab-0115"})
    @patch("labctl.cli.terraform")
    @patch("labctl.cli.synth")
    @patch("labctl.cli.ensure_logged_in")
    @patch("labctl.cli.resource_group_exists", return_value=False)
    def test_purges_vault(self, _rg, _login, _synth, mock_tf, _out, mock_az, clean_env):
        assert cli.destroy(parse("destroy", "keyvault", "--auto-approve", "--purge")) == 0
        assert ["destroy", "-auto-approve", "-input=false"] in [c.args[1] for c in mock_tf.call_args_list]
        mock_az.assert_called_once_with(["keyvault", "purge", "-n", "kv-ai-lab-0115"])

    @patch("labctl.cli.terraform")
    @patch("labctl.cli.resource_group_exists", return_value=False)
    def test_requires_typed_confirmation(self, _rg, mock_tf, clean_env):
        with patch("labctl.cli.confirm", return_value=False) as mock_confirm:
            assert cli.destroy(parse("destroy", "core")) == 0
        assert mock_confirm.call_args[0][1] == "destroy"
        mock_tf.assert_not_called()


class TestGrantRole:
    @patch("labctl.cli.grant_role")
    @patch("labctl.cli.terraform_outputs", return_value={"key_vault_id": SCOPE})
    @patch("labctl.cli.current_user_object_id", return_value="me-oid")
    def test_current_user_on_key_vault(self, _me, _out, mock_grant):
        assert cli.grant(parse("grant-role", "keyvault", "--role", "secrets-officer", "--current-user")) == 0
        mock_grant.assert_called_once_with(
            principal_id="me-oid",
            role="b86a8fe4-44ce-4948-aee5-eccb2c155cd7",
            scope=SCOPE,
            principal_type="User",
        )

    @patch("labctl.cli.grant_role")
    @patch("labctl.cli.apim_principal_id", return_value="apim-oid")
    def test_apim_identity_on_storage(self, _apim, mock_grant):
        cli.grant(
            parse(
                "grant-role", "storage", "--role", "Storage Blob Data Contributor",
                "--apim", "apim-ai-lab-0115", "--scope", "/subscriptions/s/storage",
            )
        )
        assert mock_grant.call_args.kwargs["principal_type"] == "ServicePrincipal"
        assert mock_grant.call_args.kwargs["principal_id"] == "apim-oid"

    def test_principal_source_required(self):
        with pytest.raises(SystemExit):
            parse("grant-role", "registry", "--role", "AcrPull")

    def test_invalid_role(self):
        with pytest.raises(ValueError):
            cli.grant(parse("grant-role", "registry", "--role", "Owner", "--principal-id", "x"))


class TestStorageOps:
    @patch("labctl.cli.az")
    def test_upload_uses_login_auth(self, mock_az, tmp_path):
        f = tmp_path / "hello.txt"
        f.write_text("hi")
        args = parse("storage-ops", "upload", "--account", "stailab001", "--container", "data", "--file", str(f))
        assert cli.storage_ops(args) == 0
        cmd = mock_az.call_args[0][0]
        assert cmd[:3] == ["storage", "blob", "upload"]
        assert cmd[cmd.index("--name") + 1] == "hello.txt"
        assert cmd[-2:] == ["--auth-mode", "login"]

    @patch("labctl.cli.az_json", return_value=[{"name": "a"}, {"name": "b"}])
    def test_list_containers(self, _json, capsys):
        cli.storage_ops(parse("storage-ops", "list-containers", "--account", "stailab001"))
        assert capsys.readouterr().out.split() == ["a", "b"]

    def test_container_required(self):
        with pytest.raises(CmdError, match="requires --container"):
            cli.storage_ops(parse("storage-ops", "list", "--account", "stailab001"))


class TestDns:
    @patch("labctl.cli.query_resolver")
    def test_resolver_answers(self, mock_query):
        mock_query.side_effect = lambda name, ip: ["10.1.0.4"] if name.endswith("windows.net") else ["20.70.246.20"]
        assert cli.dns_test(parse("test-dns", "--ip", "10.1.0.132", "stailab001.blob.core.windows.net")) == 0

    @patch("labctl.cli.query_resolver", return_value=["20.60.1.1"])
    def test_public_answer_fails(self, _q):
        assert cli.dns_test(parse("test-dns", "--ip", "10.1.0.132", "stailab001.blob.core.windows.net")) == 1

    @patch("labctl.cli.terraform_outputs", return_value={"storage_account_name": "stailab001", "private_endpoint_ip": "10.1.0.4"})
    def test_verify_dns_retries_until_private(self, _out):
        resolver = MagicMock(side_effect=[["20.60.1.1"], ["10.1.0.4"]])
        with patch("labctl.cli.resolve_host", resolver):
            assert cli.verify_dns(parse("verify-dns", "storage", "--delay", "0")) == 0
        assert resolver.call_count == 2
        resolver.assert_called_with("stailab001.blob.core.windows.net")

    @patch("labctl.cli.terraform_outputs", return_value={"registry_name": "acraihub0115"})
    @patch("labctl.cli.resolve_host", return_value=["52.1.1.1"])
    def test_verify_dns_gives_up(self, mock_resolve, _out):
        assert cli.verify_dns(parse("verify-dns", "registry", "--retries", "3", "--delay", "0")) == cli.EXIT_VALIDATE
        assert mock_resolve.call_count == 3


class TestStorageApiCommand:
    @patch("labctl.cli.run_storage_api_test", return_value=[checks.CheckResult("upload", checks.PASS, "HTTP 201")])
    @patch("labctl.cli.access_token", return_value="tok-1")
    @patch("labctl.cli.terraform_outputs")
    def test_uses_apim_outputs(self, mock_out, mock_token, mock_run):
        mock_out.return_value = {
            "storage_api_url": "https://apim-ai-lab-0115.azure-api.net/storage",
            "storage_api_audience": "api://ai-lab-storage-api",
        }
        assert cli.storage_api_test(parse("test-storage-api")) == 0
        mock_out.assert_called_once_with("apim")
        mock_token.assert_called_once_with("api://ai-lab-storage-api")
        mock_run.assert_called_once_with("https://apim-ai-lab-0115.azure-api.net/storage", "tok-1")

    @patch("labctl.cli.terraform_outputs", return_value={"apim_name": "apim-ai-lab-0115"})
    def test_api_not_published(self, _out):
        with pytest.raises(CmdError, match="enableStorageApi"):
            cli.storage_api_test(parse("test-storage-api"))

    @patch("labctl.cli.run_storage_api_test", return_value=[checks.CheckResult("upload", checks.FAIL, "HTTP 403")])
    @patch("labctl.cli.access_token", return_value="tok-1")
    @patch("labctl.cli.terraform_outputs")
    def test_failed_call_exit_code(self, mock_out, _token, _run):
        args = parse("test-storage-api", "--url", "https://gw/storage", "--audience", "api://x")
        assert cli.storage_api_test(args) == 1
        mock_out.assert_not_called()

    @patch("labctl.cli.run_storage_api_test", side_effect=requests.ConnectionError("no route"))
    @patch("labctl.cli.access_token", return_value="tok-1")
    def test_unreachable_gateway(self, _token, _run):
        args = parse("test-storage-api", "--url", "https://gw/storage", "--audience", "api://x")
        assert cli.storage_api_test(args) == 1


class TestScanAndLint:
    def test_scan_clean_tree(self, tmp_path):
        (tmp_path / "main.py").write_text("print('ok')\n")
        assert cli.scan_secrets(parse("scan-secrets", "--root", str(tmp_path))) == 0

    def test_scan_finds_secret(self, tmp_path):
        (tmp_path / "leak.env").write_text("AKIA" + "Z" * 16 + "\n")
        assert cli.scan_secrets(parse("scan-secrets", "--root", str(tmp_path))) == 1

    @patch("labctl.cli.terraform")
    @patch("labctl.cli.synth")
    def test_lint_all(self, mock_synth, mock_tf):
        assert cli.lint(parse("lint")) == 0
        assert mock_synth.call_count == 5
        assert ["init", "-backend=false", "-input=false"] in [c.args[1] for c in mock_tf.call_args_list]

    @patch("labctl.cli.terraform")
    @patch("labctl.cli.synth")
    def test_lint_failure(self, mock_synth, _tf):
        mock_synth.side_effect = CmdError("synth failed")
        assert cli.lint(parse("lint", "apim")) == 1


class TestMain:
    def test_phase_exit_code(self):
        with patch("labctl.cli.deploy", side_effect=cli.PhaseFailed(3, "boom")):
            with pytest.raises(SystemExit) as exc:
                cli.main(["deploy", "core"])
        assert exc.value.code == 3

    def test_unexpected_command_error(self):
        with patch("labctl.cli.scan_tree", side_effect=CmdError("boom")):
            with pytest.raises(SystemExit) as exc:
                cli.main(["scan-secrets"])
        assert exc.value.code == 1
