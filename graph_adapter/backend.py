from __future__ import annotations

import requests  # type: ignore[import-untyped]

from graph_adapter.client import GraphClient
from graph_adapter.inventory import GraphGroupLookup, GraphInventoryProvider
from graph_adapter.services import (
    GraphDirectoryService,
    GraphManagementService,
    GraphProvisioningRegistry,
)
from sunset_core.config import Config
from sunset_core.errors import ConfigurationError
from sunset_core.pipeline import Backend
from sunset_core.providers.types import ServiceBundle


def build_graph_backend(
    config: Config,
    *,
    session: requests.Session | None = None,
) -> Backend:
    if not config.graph_access_token:
        raise ConfigurationError("GRAPH_ACCESS_TOKEN is required for the graph backend")
    client = GraphClient(
        session or requests.Session(),
        config.graph_base_url,
        access_token=config.graph_access_token,
        timeout_s=config.graph_timeout_s,
    )
    groups = GraphGroupLookup(client)
    return Backend(
        inventory=GraphInventoryProvider(client, groups=groups),
        services=ServiceBundle(
            management=GraphManagementService(client),
            provisioning=GraphProvisioningRegistry(client),
            directory=GraphDirectoryService(client),
        ),
        groups=groups,
    )
