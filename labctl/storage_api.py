"""
End-to-end test of the Storage API published on API Management.

Runs upload, list, download and delete against the gateway with an Entra ID
token, then confirms the blob is gone. A failed call stops the run; content
or listing mismatches are warnings (listing can lag the upload).
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

import requests

from .checks import FAIL, PASS, WARN, CheckResult
from .utils import CmdError, az_tsv


logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30


def access_token(audience: str) -> str:
    token = az_tsv(["account", "get-access-token", "--resource", audience, "--query", "accessToken"])
    if not token:
        raise CmdError(
            f"Could not get a token for {audience} "
            f"(try: az login --scope {audience}/.default)"
        )
    return token


def _expect_status(name: str, response: requests.Response, codes: tuple) -> CheckResult:
    if response.status_code in codes:
        return CheckResult(name, PASS, f"HTTP {response.status_code}")
    return CheckResult(name, FAIL, f"HTTP {response.status_code}: {response.text[:200]}")


def run_storage_api_test(
    base_url: str,
    token: str,
    *,
    file_name: Optional[str] = None,
    content: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> List[CheckResult]:
    """Exercise the four operations in order; stop at the first failed call."""
    session = session or requests.Session()
    session.headers.update({"Authorization": f"Bearer {token}"})
    file_name = file_name or f"test-{int(time.time())}.txt"
    content = content or f"Hello from labctl storage API test {file_name}"
    files_url = f"{base_url.rstrip('/')}/files"
    file_url = f"{files_url}/{file_name}"
    results: List[CheckResult] = []

    logger.info("Uploading %s", file_name)
    upload = session.put(
        file_url,
        data=content.encode("utf-8"),
        headers={"Content-Type": "text/plain"},
        timeout=REQUEST_TIMEOUT,
    )
    results.append(_expect_status("upload", upload, (201,)))
    if results[-1].failed:
        return results

    listing = session.get(files_url, timeout=REQUEST_TIMEOUT)
    results.append(_expect_status("list", listing, (200,)))
    if results[-1].failed:
        return results
    try:
        names = [f.get("name") for f in listing.json().get("files", [])]
    except ValueError:
        names = []
    if file_name in names:
        results.append(CheckResult("list contains upload", PASS, file_name))
    else:
        results.append(CheckResult("list contains upload", WARN, "not listed yet"))

    download = session.get(file_url, timeout=REQUEST_TIMEOUT)
    results.append(_expect_status("download", download, (200,)))
    if results[-1].failed:
        return results
    if download.text == content:
        results.append(CheckResult("download content", PASS, "matches upload"))
    else:
        results.append(CheckResult("download content", WARN, f"received {download.text[:80]!r}"))

    delete = session.delete(file_url, timeout=REQUEST_TIMEOUT)
    results.append(_expect_status("delete", delete, (202, 204)))
    if results[-1].failed:
        return results

    verify = session.get(file_url, timeout=REQUEST_TIMEOUT)
    if verify.status_code == 404:
        results.append(CheckResult("deleted", PASS, "HTTP 404"))
    else:
        results.append(CheckResult("deleted", WARN, f"still reachable (HTTP {verify.status_code})"))
    return results
