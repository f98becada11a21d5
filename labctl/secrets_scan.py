"""
Working-tree scan for hardcoded credentials.

Parameter files must never carry secrets; this is the gate that keeps them
(and everything else under version control) clean.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Sequence


PATTERNS = [
    # Azure storage credentials
    r"DefaultEndpointsProtocol=https;AccountName=",
    r"AccountKey=[A-Za-z0-9+/=]{88}",
    r"SharedAccessSignature=sv=[0-9]{4}",
    r"api[_-]?key\s*[:=]\s*['\"][A-Za-z0-9]{32,}['\"]",
    r"password\s*[:=]\s*['\"][^'\"]{8,}['\"]",
    r"passwd\s*[:=]\s*['\"][^'\"]{8,}['\"]",
    r"pwd\s*[:=]\s*['\"][^'\"]{8,}['\"]",
    r"Server=[^;]+;Database=[^;]+;User Id=[^;]+;Password=",
    r"mongodb://[^:\s]+:[^@\s]+@",
    r"postgres://[^:\s]+:[^@\s]+@",
    r"BEGIN RSA PRIVATE KEY",
    r"BEGIN OPENSSH PRIVATE KEY",
    r"BEGIN PRIVATE KEY",
    r"AKIA[0-9A-Z]{16}",
    r"secret\s*[:=]\s*['\"][A-Za-z0-9+/=]{20,}['\"]",
    r"token\s*[:=]\s*['\"][A-Za-z0-9._-]{20,}['\"]",
]

EXCLUDE_DIRS = {
    ".git",
    "node_modules",
    ".venv",
    "venv",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    "cdktf.out",
    ".terraform",
    ".vscode",
    "build",
    "dist",
}

# The scanner and its tests necessarily contain the patterns themselves
EXCLUDE_FILES = {"secrets_scan.py", "test_secrets_scan.py"}

_COMPILED = [re.compile(p, re.IGNORECASE) for p in PATTERNS]


@dataclass(frozen=True)
class Finding:
    path: Path
    line_no: int
    pattern: str
    line: str


def scan_text(text: str, path: Path = Path("<text>")) -> List[Finding]:
    findings: List[Finding] = []
    for no, line in enumerate(text.splitlines(), start=1):
        for rx in _COMPILED:
            if rx.search(line):
                findings.append(Finding(path, no, rx.pattern, line.strip()[:200]))
                break
    return findings


def _is_text(path: Path) -> bool:
    try:
        with path.open("rb") as fh:
            return b"\0" not in fh.read(1024)
    except OSError:
        return False


def iter_files(root: Path, exclude_dirs: Sequence[str] = tuple(EXCLUDE_DIRS)) -> Iterator[Path]:
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root)
        if any(part in exclude_dirs or part.endswith(".egg-info") for part in rel.parts):
            continue
        if path.is_file() and path.name not in EXCLUDE_FILES and _is_text(path):
            yield path


def scan_tree(root: Path) -> tuple[int, List[Finding]]:
    """Return (files scanned, findings)."""
    scanned = 0
    findings: List[Finding] = []
    for path in iter_files(root):
        scanned += 1
        text = path.read_text(encoding="utf-8", errors="replace")
        findings.extend(scan_text(text, path))
    return scanned, findings
