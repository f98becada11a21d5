from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import requests

from ailab_infra.utils.config_loader import (
    STACKS,
    load_parameters,
    load_stack_config,
    parameter_file_path,
    storage_account_name,
)
from ailab_infra.utils.validation import ConfigError

from . import checks
from .dns import query_resolver, resolve_host, resolve_with_retries
from .roles import (
    KEYVAULT_ROLES,
    PRINCIPAL_TYPES,
    TARGET_ROLES,
    apim_principal_id,
    current_user_object_id,
    existing_assignments,
    grant_role,
    resolve_role,
    signed_in_principal_id,
    user_object_id,
)
from .secrets_scan import scan_tree
from .stacks import STACK_INFO, get_stack
from .storage_api import access_token, run_storage_api_test
from .utils import (
    REPO_ROOT,
    CmdError,
    az,
    az_json,
    az_ok,
    az_tsv,
    cdktf,
    configure_logging,
    confirm,
    terraform,
    terraform_outputs,
)
from .whatif import PlanSummary, summarize_plan_json


logger = logging.getLogger(__name__)

EXIT_PREREQ = 1
EXIT_WHATIF = 2
EXIT_DEPLOY = 3
EXIT_VALIDATE = 4

PLAN_FILE = "labctl.tfplan"
LINT_SUBSCRIPTION = "00000000-0000-0000-0000-000000000000"

# Either role can create keys on an RBAC vault
KEY_CREATOR_ROLES = ("crypto-officer", "administrator")


class PhaseFailed(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code


def stack_env(
    stack: str,
    parameter_file: Optional[str] = None,
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Environment for `cdktf synth` restricted to one stack."""
    env = dict(base if base is not None else os.environ)
    env["LABCTL_STACKS"] = stack
    if parameter_file:
        env[f"{stack.upper()}_PARAMETER_FILE"] = str(Path(parameter_file).resolve())
    return env


def _stack_params(stack: str, env: Mapping[str, str]) -> dict:
    return load_parameters(parameter_file_path(repo_root=REPO_ROOT, stack=stack, env=env), stack)


# ---------------------------------------------------------------- prerequisites


def ensure_logged_in(env: Dict[str, str]) -> None:
    if not az_ok(["account", "show"]):
        raise CmdError("Not logged in to Azure (run 'az login')")
    if not env.get("ARM_SUBSCRIPTION_ID"):
        env["ARM_SUBSCRIPTION_ID"] = az_tsv(["account", "show", "--query", "id"])
        logger.info("Using subscription %s from az account", env["ARM_SUBSCRIPTION_ID"])


def resource_group_exists(name: str) -> bool:
    return az(["group", "exists", "-n", name]).strip().lower() == "true"


def discover_key_vault(resource_group: str) -> str:
    name = az_tsv(["keyvault", "list", "-g", resource_group, "--query", "[0].name"])
    if not name:
        raise CmdError(
            f"No Key Vault found in {resource_group}; deploy the keyvault stack first"
        )
    return name


def check_cmk_vault(name: str) -> None:
    vault = az_json(["keyvault", "show", "-n", name])
    failures = [r for r in checks.check_key_vault(vault) if r.failed]
    if failures:
        details = "; ".join(f"{r.name}: {r.detail}" for r in failures)
        raise CmdError(f"Key Vault {name} cannot hold a storage CMK: {details}")


def check_vault_data_plane(name: str) -> None:
    """The CMK key is written over the vault's private endpoint as the signed-in principal."""
    fqdn = f"{name}.vault.azure.net"
    result = checks.check_dns_resolution(fqdn, resolve_host(fqdn))
    if result.status != checks.PASS:
        raise CmdError(
            f"Key Vault {name} is not reachable over its private endpoint ({result.detail}); "
            "connect the VPN and resolve through the DNS Private Resolver"
        )
    principal = signed_in_principal_id()
    scope = az_tsv(["keyvault", "show", "-n", name, "--query", "id"])
    if not any(
        existing_assignments(principal, KEYVAULT_ROLES[role], scope, include_inherited=True)
        for role in KEY_CREATOR_ROLES
    ):
        raise CmdError(
            f"Signed-in principal cannot create keys in {name}; "
            "run: labctl grant-role keyvault --role crypto-officer --current-user"
        )


def check_storage_name(params: Mapping[str, object]) -> None:
    account = storage_account_name(str(params["storageNameSuffix"]))
    available = az_tsv(["storage", "account", "check-name", "--name", account, "--query", "nameAvailable"])
    if available.lower() == "true":
        return
    if az_ok(["storage", "account", "show", "-g", str(params["resourceGroupName"]), "-n", account]):
        return
    raise CmdError(f"Storage account name {account} is taken globally; change storageNameSuffix")


def check_prerequisites(stack: str, env: Dict[str, str]) -> None:
    """Raise CmdError/ConfigError when the stage cannot be deployed yet."""
    info = get_stack(stack)
    ensure_logged_in(env)
    params = _stack_params(stack, env)

    for dependency in info.requires:
        rg = STACK_INFO[dependency].resource_group
        if dependency == "keyvault" and "keyVaultResourceGroupName" in params:
            rg = str(params["keyVaultResourceGroupName"])
        if not resource_group_exists(rg):
            raise CmdError(f"Resource group {rg} not found; deploy the {dependency} stack first")

    if "vnetName" in params:
        vnet_args = ["network", "vnet", "show", "-g", params["coreResourceGroupName"], "-n", params["vnetName"]]
        if not az_ok(vnet_args):
            raise CmdError(f"Shared VNet {params['vnetName']} not found; deploy the core stack first")

    if stack == "storage":
        check_storage_name(params)
        if params["enableCmk"]:
            vault = params["keyVaultName"] or env.get("KEY_VAULT_NAME") or discover_key_vault(
                str(params["keyVaultResourceGroupName"])
            )
            check_cmk_vault(vault)
            check_vault_data_plane(vault)
            env["KEY_VAULT_NAME"] = vault
            logger.info("Customer-managed key will live in Key Vault %s", vault)

    # Surfaces parameter problems before synth does
    load_stack_config(stack, repo_root=REPO_ROOT, env=env)


# ---------------------------------------------------------------- synth / plan


def synth(stack: str, env: Mapping[str, str]) -> None:
    logger.info("Synthesizing %s...", stack)
    cdktf(["synth"], env=env)


def plan(stack: str, env: Mapping[str, str]) -> PlanSummary:
    terraform(stack, ["init", "-input=false"], env=env, echo=False)
    terraform(stack, ["plan", "-input=false", f"-out={PLAN_FILE}"], env=env)
    raw = terraform(stack, ["show", "-json", PLAN_FILE], env=env, echo=False)
    return summarize_plan_json(raw)


def report_plan(stack: str, summary: PlanSummary) -> None:
    logger.info("What-if for %s: %s", stack, summary.describe())
    for address in summary.replaced:
        logger.warning("Will be REPLACED: %s", address)
    for address in summary.deleted:
        logger.warning("Will be DELETED: %s", address)


# ---------------------------------------------------------------- commands


def deploy(args: argparse.Namespace) -> int:
    stack = args.stack
    info = get_stack(stack)
    env = stack_env(stack, args.parameter_file)
    started = time.monotonic()

    try:
        check_prerequisites(stack, env)
    except (CmdError, ConfigError, FileNotFoundError) as ex:
        raise PhaseFailed(EXIT_PREREQ, f"Prerequisite check failed: {ex}") from ex

    try:
        synth(stack, env)
        summary = plan(stack, env)
    except CmdError as ex:
        raise PhaseFailed(EXIT_WHATIF, f"What-if failed: {ex}") from ex

    if not args.skip_whatif:
        report_plan(stack, summary)
    if args.what_if:
        return 0
    if summary.is_idempotent():
        logger.info("No changes; %s is up to date", stack)
    elif not args.auto_approve and not confirm(f"Deploy {stack} with these changes?"):
        logger.info("Deployment cancelled")
        return 0

    try:
        terraform(stack, ["apply", "-input=false", PLAN_FILE], env=env)
        outputs = terraform_outputs(stack, env=env)
    except CmdError as ex:
        raise PhaseFailed(EXIT_DEPLOY, f"Deployment failed: {ex}") from ex

    print(json.dumps({k: v for k, v in outputs.items() if k != "config_json"}, indent=2, sort_keys=True))

    elapsed = time.monotonic() - started
    if elapsed > info.target_seconds:
        logger.warning(
            "Deployment took %.0fs, above the %ds target for %s", elapsed, info.target_seconds, stack
        )
    else:
        logger.info("Deployment completed in %.0fs", elapsed)

    if stack == "storage" and outputs.get("cmk_enabled"):
        logger.info(
            "Encryption identity was just granted Key Vault access; if CMK "
            "configuration reports 403, wait a few minutes and re-run deploy"
        )
    if stack == "apim" and outputs.get("storage_api_url"):
        logger.info(
            "Storage API published at %s; grant the APIM identity blob access with "
            "'labctl grant-role storage --role \"Storage Blob Data Contributor\" --apim %s', "
            "then run 'labctl test-storage-api'",
            outputs["storage_api_url"],
            outputs.get("apim_name", "<name>"),
        )
    return 0


def what_if(args: argparse.Namespace) -> int:
    stack = args.stack
    get_stack(stack)
    env = stack_env(stack, args.parameter_file)
    try:
        check_prerequisites(stack, env)
    except (CmdError, ConfigError, FileNotFoundError) as ex:
        raise PhaseFailed(EXIT_PREREQ, f"Prerequisite check failed: {ex}") from ex
    try:
        synth(stack, env)
        summary = plan(stack, env)
    except CmdError as ex:
        raise PhaseFailed(EXIT_WHATIF, f"What-if failed: {ex}") from ex
    report_plan(stack, summary)
    if args.idempotent and not summary.is_idempotent():
        logger.error("Expected no changes but what-if reports %d", summary.changes)
        return EXIT_WHATIF
    return 0


def _print_results(results: List[checks.CheckResult]) -> None:
    for r in results:
        level = {checks.PASS: logging.INFO, checks.WARN: logging.WARNING}.get(r.status, logging.ERROR)
        logger.log(level, "[%s] %s: %s", r.status.upper(), r.name, r.detail)
    passed = sum(1 for r in results if r.status == checks.PASS)
    failed = sum(1 for r in results if r.failed)
    logger.info("Checks: %d passed, %d failed, %d total", passed, failed, len(results))


def _endpoint_checks(config, resource_group: str) -> List[checks.CheckResult]:
    pe = az_json(
        ["network", "private-endpoint", "show", "-g", resource_group, "-n", config.private_endpoint.name]
    )
    return checks.check_private_endpoint(pe)


def deployed_checks(stack: str, env: Mapping[str, str]) -> List[checks.CheckResult]:
    """Fetch live state with az and run the stage's assertions."""
    config = load_stack_config(stack, repo_root=REPO_ROOT, env=env)
    rg = config.resource_group_name
    results: List[checks.CheckResult] = []

    if stack == "core":
        hub = config.hub
        vwan = az_json(["network", "vwan", "show", "-g", rg, "-n", hub.vwan_name])
        results += checks.check_vwan(vwan)
        results += checks.check_vhub(
            az_json(["network", "vhub", "show", "-g", rg, "-n", hub.vhub_name]), hub.address_prefix
        )
        results += checks.check_vpn_gateway(
            az_json(["network", "vpn-gateway", "show", "-g", rg, "-n", hub.vpn_gateway_name]), hub.bgp_asn
        )
        results += checks.check_tags(vwan)
        return results

    if stack == "keyvault":
        resource = az_json(["keyvault", "show", "-n", config.vault_name])
        results += checks.check_key_vault(resource, require_cmk_ready=config.purge_protection_enabled)
        results += _endpoint_checks(config, rg)
    elif stack == "storage":
        resource = az_json(["storage", "account", "show", "-g", rg, "-n", config.account_name])
        results += checks.check_storage_public_access(resource)
        if config.cmk is not None:
            vault_uri = az_tsv(["keyvault", "show", "-n", config.cmk.key_vault_name, "--query", "properties.vaultUri"])
            results += checks.check_storage_cmk(resource, vault_uri, config.cmk.key_name)
        results += _endpoint_checks(config, rg)
    elif stack == "registry":
        resource = az_json(["acr", "show", "-g", rg, "-n", config.registry_name])
        results += checks.check_registry(resource)
        results += _endpoint_checks(config, rg)
    else:
        resource = az_json(["apim", "show", "-g", rg, "-n", config.apim_name])
        results += checks.check_apim(resource, config.virtual_network_type)

    results += checks.check_tags(resource)
    return results


def validate(args: argparse.Namespace) -> int:
    stack = args.stack
    get_stack(stack)
    env = stack_env(stack, args.parameter_file)
    try:
        if args.deployed:
            ensure_logged_in(env)
        elif stack == "storage":
            env.setdefault("KEY_VAULT_NAME", "kv-validate-placeholder")
        env.setdefault("ARM_SUBSCRIPTION_ID", LINT_SUBSCRIPTION)
        load_stack_config(stack, repo_root=REPO_ROOT, env=env)
        logger.info("Parameters for %s are valid", stack)
        synth(stack, env)
    except ConfigError as ex:
        for problem in ex.problems:
            logger.error("  - %s", problem)
        raise PhaseFailed(EXIT_VALIDATE, "Parameter validation failed") from ex
    except (CmdError, FileNotFoundError) as ex:
        raise PhaseFailed(EXIT_VALIDATE, f"Validation failed: {ex}") from ex

    if not args.deployed:
        return 0
    try:
        results = deployed_checks(stack, env)
    except CmdError as ex:
        raise PhaseFailed(EXIT_VALIDATE, f"Could not read deployed state: {ex}") from ex
    _print_results(results)
    return 0 if checks.all_passed(results) else EXIT_VALIDATE


def destroy(args: argparse.Namespace) -> int:
    stack = args.stack
    get_stack(stack)
    env = stack_env(stack, args.parameter_file)
    if stack == "keyvault" and resource_group_exists(STACK_INFO["storage"].resource_group):
        logger.warning("Storage may still use a customer-managed key from this vault")
    if not args.auto_approve and not confirm(f"Destroy every resource of the {stack} stack?", "destroy"):
        logger.info("Destroy cancelled")
        return 0
    try:
        ensure_logged_in(env)
        if stack == "storage":
            params = _stack_params(stack, env)
            if params["enableCmk"] and not (params["keyVaultName"] or env.get("KEY_VAULT_NAME")):
                env["KEY_VAULT_NAME"] = discover_key_vault(str(params["keyVaultResourceGroupName"]))
        synth(stack, env)
        terraform(stack, ["init", "-input=false"], env=env, echo=False)
        outputs = terraform_outputs(stack, env=env)
        terraform(stack, ["destroy", "-auto-approve", "-input=false"], env=env)
    except (CmdError, ConfigError) as ex:
        raise PhaseFailed(EXIT_DEPLOY, f"Destroy failed: {ex}") from ex

    if stack == "keyvault" and args.purge and outputs.get("key_vault_name"):
        name = outputs["key_vault_name"]
        logger.info("Purging soft-deleted Key Vault %s", name)
        try:
            az(["keyvault", "purge", "-n", name])
        except CmdError as ex:
            # Purge protection blocks this until the retention period ends
            logger.warning("Purge failed: %s", ex)
    logger.info("Destroy of %s completed", stack)
    return 0


_SCOPE_OUTPUT = {"keyvault": "key_vault_id", "storage": "storage_account_id", "registry": "registry_id"}


def grant(args: argparse.Namespace) -> int:
    role = resolve_role(args.target, args.role)
    principal_type = args.principal_type
    if args.principal_id:
        principal = args.principal_id
    elif args.user:
        principal = user_object_id(args.user)
        principal_type = principal_type or "User"
    elif args.apim:
        principal = apim_principal_id(args.apim_resource_group, args.apim)
        principal_type = principal_type or "ServicePrincipal"
    else:
        principal = current_user_object_id()
        principal_type = principal_type or "User"

    scope = args.scope or terraform_outputs(args.target).get(_SCOPE_OUTPUT[args.target])
    if not scope:
        raise CmdError(f"No scope for {args.target}; pass --scope or deploy the stack first")
    grant_role(principal_id=principal, role=role, scope=scope, principal_type=principal_type)
    return 0


def storage_ops(args: argparse.Namespace) -> int:
    account = args.account or terraform_outputs("storage").get("storage_account_name")
    if not account:
        raise CmdError("Storage account unknown; pass --account")
    base = ["--account-name", account, "--auth-mode", "login"]
    op = args.op

    if op == "list-containers":
        for c in az_json(["storage", "container", "list", *base]) or []:
            print(c["name"])
        return 0
    if not args.container:
        raise CmdError(f"{op} requires --container")
    target = ["--container-name", args.container]

    if op == "create-container":
        az(["storage", "container", "create", "--name", args.container, *base])
    elif op == "list":
        for b in az_json(["storage", "blob", "list", *target, *base]) or []:
            print(b["name"])
    elif op == "upload":
        if not args.file:
            raise CmdError("upload requires --file")
        name = args.name or Path(args.file).name
        az(["storage", "blob", "upload", *target, "--name", name, "--file", args.file, "--overwrite", *base])
    elif op == "download":
        if not args.name:
            raise CmdError("download requires --name")
        dest = args.file or args.name
        az(["storage", "blob", "download", *target, "--name", args.name, "--file", dest, *base])
    elif op == "delete-blob":
        if not args.name:
            raise CmdError("delete-blob requires --name")
        az(["storage", "blob", "delete", *target, "--name", args.name, *base])
    logger.info("%s completed on %s", op, account)
    return 0


def _known_fqdns() -> List[str]:
    names = []
    for info in STACK_INFO.values():
        if not info.fqdn_output:
            continue
        try:
            fqdn = info.fqdn(terraform_outputs(info.name))
        except CmdError:
            continue
        if fqdn:
            names.append(fqdn)
    return names


def dns_test(args: argparse.Namespace) -> int:
    names = args.names or _known_fqdns()
    if not names:
        raise CmdError("No names to test; pass FQDNs or deploy a stack with a private endpoint")
    results = [
        checks.check_dns_resolution(name, query_resolver(name, args.ip), cidrs=args.cidr or checks.DEFAULT_PRIVATE_CIDRS)
        for name in names
    ]
    # Public names must still resolve through the forwarder
    public = query_resolver("microsoft.com", args.ip)
    results.append(
        checks.CheckResult(
            "dns public fallback",
            checks.PASS if public else checks.FAIL,
            ", ".join(public) or "no answer",
        )
    )
    _print_results(results)
    return 0 if checks.all_passed(results) else 1


def verify_dns(args: argparse.Namespace) -> int:
    info = get_stack(args.stack)
    outputs = terraform_outputs(args.stack)
    fqdn = info.fqdn(outputs)
    if not fqdn:
        raise CmdError(f"{args.stack} exposes no private FQDN (deployed?)")
    expected = outputs.get("private_endpoint_ip")

    def accept(addresses) -> bool:
        return checks.check_dns_resolution(fqdn, addresses, expected).status == checks.PASS

    addresses = resolve_with_retries(fqdn, accept, attempts=args.retries, delay=args.delay, resolver=resolve_host)
    result = checks.check_dns_resolution(fqdn, addresses, expected)
    _print_results([result])
    return 0 if result.status == checks.PASS else EXIT_VALIDATE


def storage_api_test(args: argparse.Namespace) -> int:
    url, audience = args.url, args.audience
    if not (url and audience):
        outputs = terraform_outputs("apim")
        url = url or outputs.get("storage_api_url")
        audience = audience or outputs.get("storage_api_audience")
    if not (url and audience):
        raise CmdError("Storage API not deployed; set enableStorageApi and deploy apim, or pass --url/--audience")
    logger.info("Testing %s", url)
    token = access_token(audience)
    try:
        results = run_storage_api_test(url, token)
    except requests.RequestException as ex:
        logger.error("Storage API unreachable: %s", ex)
        return 1
    _print_results(results)
    if not checks.all_passed(results):
        logger.error(
            "If calls return 403, grant APIM's identity blob access: "
            "labctl grant-role storage --role 'Storage Blob Data Contributor' --apim <name>"
        )
        return 1
    return 0


def scan_secrets(args: argparse.Namespace) -> int:
    root = Path(args.root).resolve()
    scanned, findings = scan_tree(root)
    for f in findings:
        logger.error("Potential secret in %s:%d (%s)", f.path.relative_to(root), f.line_no, f.pattern)
    logger.info("Files scanned: %d, potential secrets: %d", scanned, len(findings))
    if findings:
        logger.error("Move secrets to Key Vault and keep them out of parameter files")
        return 1
    return 0


def lint(args: argparse.Namespace) -> int:
    stacks = STACKS if args.stack == "all" else [args.stack]
    failed = []
    for stack in stacks:
        env = stack_env(stack)
        env.setdefault("ARM_SUBSCRIPTION_ID", LINT_SUBSCRIPTION)
        env.setdefault("KEY_VAULT_NAME", "kv-lint-placeholder")
        try:
            synth(stack, env)
            terraform(stack, ["init", "-backend=false", "-input=false"], env=env, echo=False)
            terraform(stack, ["validate"], env=env)
        except CmdError as ex:
            logger.error("Lint failed for %s: %s", stack, ex)
            failed.append(stack)
    if failed:
        logger.error("Lint failed: %s", ", ".join(failed))
        return 1
    logger.info("Lint passed: %s", ", ".join(stacks))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="labctl", description="AI lab Azure infrastructure CLI")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd", required=True)

    d = sub.add_parser("deploy", help="Deploy one stage")
    d.add_argument("stack", choices=STACKS)
    d.add_argument("-p", "--parameter-file")
    d.add_argument("--skip-whatif", action="store_true")
    d.add_argument("--auto-approve", action="store_true")
    d.add_argument("--what-if", action="store_true", help="Stop after the what-if summary")
    d.set_defaults(func=deploy)

    w = sub.add_parser("what-if", help="Plan and summarise changes")
    w.add_argument("stack", choices=STACKS)
    w.add_argument("-p", "--parameter-file")
    w.add_argument("--idempotent", action="store_true", help="Fail unless no changes are planned")
    w.set_defaults(func=what_if)

    v = sub.add_parser("validate", help="Validate parameters (and deployed state)")
    v.add_argument("stack", choices=STACKS)
    v.add_argument("-p", "--parameter-file")
    v.add_argument("--deployed", action="store_true")
    v.set_defaults(func=validate)

    x = sub.add_parser("destroy", help="Tear down one stage")
    x.add_argument("stack", choices=STACKS)
    x.add_argument("-p", "--parameter-file")
    x.add_argument("--auto-approve", action="store_true")
    x.add_argument("--purge", action="store_true", help="Purge the soft-deleted Key Vault")
    x.set_defaults(func=destroy)

    g = sub.add_parser("grant-role", help="Grant a data-plane role")
    g.add_argument("target", choices=sorted(TARGET_ROLES))
    g.add_argument("--role", required=True)
    who = g.add_mutually_exclusive_group(required=True)
    who.add_argument("--principal-id")
    who.add_argument("--user", help="User principal name")
    who.add_argument("--current-user", action="store_true")
    who.add_argument("--apim", help="API Management instance whose identity gets the role")
    g.add_argument("--apim-resource-group", default=STACK_INFO["apim"].resource_group)
    g.add_argument("--principal-type", choices=PRINCIPAL_TYPES)
    g.add_argument("--scope", help="Resource id (default: from the stack outputs)")
    g.set_defaults(func=grant)

    s = sub.add_parser("storage-ops", help="Blob data operations with Azure AD auth")
    s.add_argument(
        "op", choices=["create-container", "upload", "list", "download", "delete-blob", "list-containers"]
    )
    s.add_argument("--account")
    s.add_argument("--container")
    s.add_argument("--name")
    s.add_argument("--file")
    s.set_defaults(func=storage_ops)

    t = sub.add_parser("test-dns", help="Resolve names through the private resolver")
    t.add_argument("--ip", required=True, help="Resolver inbound endpoint IP")
    t.add_argument("--cidr", action="append", help="Private range answers must fall in")
    t.add_argument("names", nargs="*")
    t.set_defaults(func=dns_test)

    vd = sub.add_parser("verify-dns", help="Resolve a stage's private FQDN with retries")
    vd.add_argument("stack", choices=[name for name, info in STACK_INFO.items() if info.fqdn_output])
    vd.add_argument("--retries", type=int, default=10)
    vd.add_argument("--delay", type=float, default=15.0)
    vd.set_defaults(func=verify_dns)

    sa = sub.add_parser("test-storage-api", help="Upload, list, download and delete through APIM")
    sa.add_argument("--url", help="Storage API base URL (default: apim stack output)")
    sa.add_argument("--audience", help="Token audience (default: apim stack output)")
    sa.set_defaults(func=storage_api_test)

    sc = sub.add_parser("scan-secrets", help="Scan the tree for hardcoded credentials")
    sc.add_argument("--root", default=str(REPO_ROOT))
    sc.set_defaults(func=scan_secrets)

    li = sub.add_parser("lint", help="Synthesize and terraform validate")
    li.add_argument("stack", nargs="?", default="all", choices=[*STACKS, "all"])
    li.set_defaults(func=lint)
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    try:
        code = args.func(args)
    except PhaseFailed as ex:
        logger.error("%s", ex)
        code = ex.code
    except (CmdError, ConfigError, ValueError, FileNotFoundError) as ex:
        logger.error("%s", ex)
        code = 1
    except KeyboardInterrupt:
        code = 130
    sys.exit(code or 0)


if __name__ == "__main__":
    main()
