"""Host-trust flow for SSH remotes.

When a clone fails because the remote host key is unknown, the operator is
asked to confirm; on confirmation the host's keys are appended to the
known_hosts file in the standard ``ssh-keyscan`` line format.
"""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from urllib.parse import urlsplit

from commitchat.errors import RepositoryError
from commitchat.logger import logger

_KEYSCAN_TIMEOUT = 15

# git@host:group/name.git
_SCP_LIKE_RE = re.compile(r"^(?:[^@/]+@)?(?P<host>[^:/]+):(?!//)")


def host_of(url: str) -> str:
    """Extract the host name from an ssh://, https:// or scp-style git URL."""
    if "://" in url:
        parts = urlsplit(url)
        if parts.hostname:
            return parts.hostname
    match = _SCP_LIKE_RE.match(url)
    if match:
        return match.group("host")
    raise RepositoryError(f"cannot find a host in {url!r}")


def port_of(url: str) -> int | None:
    if "://" not in url:
        return None
    return urlsplit(url).port


def _entries(known_hosts: Path) -> set[str]:
    if not known_hosts.exists():
        return set()
    return {
        line.strip()
        for line in known_hosts.read_text().splitlines()
        if line.strip() and not line.startswith("#")
    }


def add_known_host(url: str, known_hosts: Path) -> list[str]:
    """Scan the URL's host keys and append the new ones to *known_hosts*.

    Returns the lines written; keys already on file are skipped. Raises
    RepositoryError when the scan fails or yields no keys.
    """
    host = host_of(url)
    args = ["ssh-keyscan", "-T", "10"]
    port = port_of(url)
    if port:
        args += ["-p", str(port)]
    args.append(host)

    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=_KEYSCAN_TIMEOUT)
    except (OSError, subprocess.SubprocessError) as exc:
        raise RepositoryError(f"ssh-keyscan {host} failed: {exc}") from exc

    scanned = [
        line.strip()
        for line in result.stdout.splitlines()
        if line.strip() and not line.startswith("#")
    ]
    if not scanned:
        raise RepositoryError(f"ssh-keyscan returned no keys for {host}: {result.stderr.strip()}")

    existing = _entries(known_hosts)
    lines = [line for line in dict.fromkeys(scanned) if line not in existing]
    if not lines:
        logger.info("Host keys already in known_hosts", host=host, path=str(known_hosts))
        return []

    known_hosts.parent.mkdir(parents=True, exist_ok=True)
    with known_hosts.open("a") as f:
        for line in lines:
            f.write(line + "\n")

    logger.info("Added host to known_hosts", host=host, keys=len(lines), path=str(known_hosts))
    return lines
