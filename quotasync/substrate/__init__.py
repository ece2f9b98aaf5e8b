# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Substrate clients: where Quota Limits and Hard Limits are stored."""

from .base import SubstrateClient
from .credentials import Credentials, resolve_credentials
from .kube import KubeSubstrateClient
from .memory import InMemorySubstrate

__all__ = [
    "Credentials",
    "InMemorySubstrate",
    "KubeSubstrateClient",
    "SubstrateClient",
    "resolve_credentials",
]
