# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
API server credentials.

Resolution order:
1. Explicit ``api_server`` in the substrate config (token / token_file / ca_file)
2. In-cluster service account, when ``in_cluster`` is set
3. kubeconfig (explicit path or ~/.kube/config), current or named context
"""

import base64
import logging
import os
import ssl
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..core.config import SubstrateConfig
from ..core.exceptions import CredentialsError

logger = logging.getLogger("quotasync.credentials")

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")
DEFAULT_KUBECONFIG = Path.home() / ".kube" / "config"


@dataclass
class Credentials:
    """Everything needed to open an authenticated connection"""

    server: str
    token: Optional[str] = None
    ca_file: Optional[Path] = None
    ca_data: Optional[str] = None
    client_cert_file: Optional[Path] = None
    client_key_file: Optional[Path] = None
    verify_ssl: bool = True
    # Temp files written for inline kubeconfig data, removed by cleanup()
    _temp_files: List[Path] = field(default_factory=list, repr=False)

    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def ssl_context(self) -> Union[ssl.SSLContext, bool]:
        """TLS settings in the form httpx accepts for ``verify``"""
        if not self.server.startswith("https"):
            return True
        if not self.verify_ssl:
            return False

        context = ssl.create_default_context()
        if self.ca_file:
            context.load_verify_locations(cafile=str(self.ca_file))
        if self.ca_data:
            context.load_verify_locations(cadata=self.ca_data)
        if self.client_cert_file:
            context.load_cert_chain(
                certfile=str(self.client_cert_file),
                keyfile=str(self.client_key_file) if self.client_key_file else None,
            )
        return context

    def cleanup(self) -> None:
        for path in self._temp_files:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
        self._temp_files.clear()


def _read_text(path: Path, what: str) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise CredentialsError(f"Cannot read {what} from {path}", cause=e)


def _write_temp(data: str, suffix: str, owner: Credentials) -> Path:
    fd, name = tempfile.mkstemp(prefix="quotasync-", suffix=suffix)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(data)
    path = Path(name)
    owner._temp_files.append(path)
    return path


def _decode(value: str, what: str) -> str:
    try:
        return base64.b64decode(value).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise CredentialsError(f"Invalid base64 in kubeconfig {what}", cause=e)


def from_explicit(config: SubstrateConfig) -> Credentials:
    token = config.token
    if not token and config.token_file:
        token = _read_text(config.token_file, "token")

    return Credentials(
        server=config.api_server,
        token=token,
        ca_file=config.ca_file,
        verify_ssl=config.verify_ssl,
    )


def from_service_account(
    config: SubstrateConfig, account_dir: Path = SERVICE_ACCOUNT_DIR
) -> Credentials:
    host = os.getenv("KUBERNETES_SERVICE_HOST")
    port = os.getenv("KUBERNETES_SERVICE_PORT", "443")
    if not host:
        raise CredentialsError(
            "in_cluster is set but KUBERNETES_SERVICE_HOST is not defined"
        )
    if ":" in host:
        host = f"[{host}]"

    ca_file = account_dir / "ca.crt"
    return Credentials(
        server=f"https://{host}:{port}",
        token=_read_text(account_dir / "token", "service account token"),
        ca_file=ca_file if ca_file.exists() else None,
        verify_ssl=config.verify_ssl,
    )


def _named(entries: List[Dict[str, Any]], name: str, what: str) -> Dict[str, Any]:
    for entry in entries or []:
        if entry.get("name") == name:
            return entry.get(what) or {}
    raise CredentialsError(f"kubeconfig has no {what} named {name!r}")


def from_kubeconfig(
    path: Path, context_name: Optional[str] = None, verify_ssl: bool = True
) -> Credentials:
    """
    Build credentials from a kubeconfig file.

    Supports token, token file, and client certificate auth, with file paths
    resolved relative to the kubeconfig and inline ``*-data`` values.
    """
    if not path.exists():
        raise CredentialsError(f"kubeconfig not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            kubeconfig = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise CredentialsError(f"Cannot parse kubeconfig {path}", cause=e)

    context_name = context_name or kubeconfig.get("current-context")
    if not context_name:
        raise CredentialsError(f"kubeconfig {path} has no current-context")

    context = _named(kubeconfig.get("contexts"), context_name, "context")
    cluster = _named(kubeconfig.get("clusters"), context.get("cluster"), "cluster")
    user: Dict[str, Any] = {}
    if context.get("user"):
        user = _named(kubeconfig.get("users"), context["user"], "user")

    server = cluster.get("server")
    if not server:
        raise CredentialsError(f"Cluster for context {context_name!r} has no server")

    base_dir = path.parent

    def resolve(value: Optional[str]) -> Optional[Path]:
        if not value:
            return None
        candidate = Path(value).expanduser()
        return candidate if candidate.is_absolute() else base_dir / candidate

    credentials = Credentials(
        server=server.rstrip("/"),
        verify_ssl=verify_ssl and not cluster.get("insecure-skip-tls-verify", False),
    )

    credentials.ca_file = resolve(cluster.get("certificate-authority"))
    if cluster.get("certificate-authority-data"):
        credentials.ca_data = _decode(
            cluster["certificate-authority-data"], "certificate-authority-data"
        )

    if user.get("token"):
        credentials.token = user["token"]
    elif user.get("tokenFile"):
        credentials.token = _read_text(resolve(user["tokenFile"]), "token")

    credentials.client_cert_file = resolve(user.get("client-certificate"))
    credentials.client_key_file = resolve(user.get("client-key"))
    if user.get("client-certificate-data"):
        credentials.client_cert_file = _write_temp(
            _decode(user["client-certificate-data"], "client-certificate-data"),
            ".crt",
            credentials,
        )
    if user.get("client-key-data"):
        credentials.client_key_file = _write_temp(
            _decode(user["client-key-data"], "client-key-data"),
            ".key",
            credentials,
        )

    logger.debug(f"Using kubeconfig {path}, context {context_name}")
    return credentials


def resolve_credentials(config: SubstrateConfig) -> Credentials:
    """
    Resolve credentials for the configured API server.

    Raises:
        CredentialsError: Nothing usable was configured
    """
    if config.api_server:
        return from_explicit(config)

    if config.in_cluster:
        return from_service_account(config)

    kubeconfig = config.kubeconfig or DEFAULT_KUBECONFIG
    return from_kubeconfig(kubeconfig, config.context, config.verify_ssl)
