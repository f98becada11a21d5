from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import sys
import threading
from pathlib import Path
from typing import Any, List, Mapping, Optional


logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[1]


class CmdError(Exception):
    pass


def configure_logging(verbose: bool = False) -> None:
    level = os.getenv("LABCTL_LOG_LEVEL", "DEBUG" if verbose else "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(levelname)s] %(message)s",
        stream=sys.stdout,
    )


def run(
    cmd: List[str],
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    echo: bool = True,
) -> str:
    """Execute a command, stream both pipes, and return ONLY stdout text.

    Important: Some callers JSON-parse the return; never mix stderr into it.
    """
    logger.debug("Running: %s", " ".join(cmd))
    proc = subprocess.Popen(
        cmd,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        bufsize=1,
    )

    stdout_buf: list[str] = []
    stderr_buf: list[str] = []

    def pump(pipe, tag: str) -> None:
        try:
            for line in iter(pipe.readline, ""):
                line = line.rstrip()
                if echo:
                    print(line, flush=True)
                (stdout_buf if tag == "stdout" else stderr_buf).append(line)
        finally:
            pipe.close()

    t_out = threading.Thread(target=pump, args=(proc.stdout, "stdout"), daemon=True)
    t_err = threading.Thread(target=pump, args=(proc.stderr, "stderr"), daemon=True)
    t_out.start()
    t_err.start()
    rc = proc.wait()
    t_out.join()
    t_err.join()

    out_text = "\n".join(stdout_buf).strip()
    if rc != 0:
        err_text = "\n".join(stderr_buf[-20:]).strip()
        raise CmdError(
            f"Command failed ({rc}): {' '.join(cmd)}\nSTDOUT:\n{out_text}\nSTDERR:\n{err_text}"
        )
    return out_text


def _resolve_az_exe() -> str:
    exe = shutil.which("az") or shutil.which("az.cmd")
    if not exe:
        raise CmdError("Azure CLI is not installed. Please install it first.")
    return exe


def az(args: List[str]) -> str:
    return run([_resolve_az_exe(), *args], echo=False)


def az_json(args: List[str]) -> Any:
    out = az([*args, "-o", "json"])
    return json.loads(out) if out else None


def az_tsv(args: List[str]) -> str:
    """Single tsv value; empty string when the query yields nothing."""
    value = az([*args, "-o", "tsv"]).strip()
    return "" if value in ("None", "null") else value


def az_ok(args: List[str]) -> bool:
    """True when the az command succeeds (existence checks)."""
    try:
        az([*args, "-o", "none"])
    except CmdError:
        return False
    return True


def cdktf(args: List[str], env: Optional[Mapping[str, str]] = None) -> str:
    return run(["cdktf", *args], cwd=str(REPO_ROOT), env=env)


def stack_dir(stack: str) -> Path:
    return REPO_ROOT / "cdktf.out" / "stacks" / stack


def terraform(
    stack: str, args: List[str], env: Optional[Mapping[str, str]] = None, echo: bool = True
) -> str:
    directory = stack_dir(stack)
    if not directory.exists():
        raise CmdError(f"Synthesized stack not found: {directory} (run cdktf synth first)")
    return run(["terraform", *args], cwd=str(directory), env=env, echo=echo)


def terraform_outputs(stack: str, env: Optional[Mapping[str, str]] = None) -> dict:
    """`terraform output -json` flattened to {name: value}."""
    raw = terraform(stack, ["output", "-json"], env=env, echo=False)
    doc = json.loads(raw) if raw else {}
    return {name: entry.get("value") for name, entry in doc.items()}


def confirm(prompt: str, expected: str = "yes") -> bool:
    answer = input(f"{prompt} ({expected}/no): ").strip()
    return answer == expected
