#!/usr/bin/env python3
"""edge-config - Traefik dynamic configuration for the tunnel gateway

Compiles published resources, their targets on connected sites and the
configured domains into the dynamic configuration consumed by Traefik's HTTP
provider. Every poll compiles a fresh document from one read of the resource
store; nothing is cached between polls.

Supported Resource Stores:
    - api: the control plane's internal HTTP API
    - snapshot: a YAML/JSON file holding the store's tables

Environment variables:

    Configuration file:
        CONFIG_PATH            Gateway config file (default: /config/config.yml)
                               Relevant sections:
                                 gerbil:
                                   exit_node_name: "edge-1"
                                 traefik:
                                   http_entrypoint: "web"
                                   https_entrypoint: "websecure"
                                   cert_resolver: "letsencrypt"
                                   prefer_wildcard_cert: false
                                   site_types: ["newt", "wireguard", "local"]
                                   allow_raw_resources: true
                                   additional_middlewares: []
                                 server:
                                   internal_hostname: "pangolin"
                                   internal_port: 3001
                                 domains:
                                   domain1:
                                     base_domain: "example.com"
                                     cert_resolver: "letsencrypt"
                                     prefer_wildcard_cert: true

        EXIT_NODE_NAME         Exit node to compile for; overrides gerbil.exit_node_name.
                               Unset = first exit node known to the store.

    Resource store:
        STORE_TYPE             "api" or "snapshot" (default: api)
        STORE_URL              Base URL of the control plane API
                               (default: http://pangolin:3001/api/v1/internal)
        STORE_TOKEN            Bearer token for the control plane API (optional)
        STORE_TIMEOUT_SECONDS  Per-request timeout for API reads (default: 5)
        SNAPSHOT_PATH          Snapshot file for STORE_TYPE=snapshot
                               (default: /data/snapshot.yaml)

    Runtime:
        RUN_MODE               "serve" (HTTP endpoint) or "once" (print JSON and exit)
                               (default: serve)
        LISTEN_HOST            Address to bind in serve mode (default: 0.0.0.0)
        LISTEN_PORT            Port to bind in serve mode (default: 3002)
        LOG_LEVEL              DEBUG, INFO, WARNING, ERROR (default: INFO)

    Point Traefik's HTTP provider at http://<host>:<port>/api/v1/traefik-config.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import List

import uvicorn

from edge_config.compiler import TraefikConfigCompiler
from edge_config.config import load_settings
from edge_config.server import create_app
from edge_config.store import (
    ApiResourceStore,
    ResourceStore,
    SnapshotResourceStore,
    StoreError,
)

# =============================================================================
# Configuration
# =============================================================================

CONFIG_PATH = os.getenv("CONFIG_PATH", "/config/config.yml")
EXIT_NODE_NAME = os.getenv("EXIT_NODE_NAME", "").strip()

# Resource store
STORE_TYPE = os.getenv("STORE_TYPE", "api").lower().strip()
STORE_URL = os.getenv("STORE_URL", "http://pangolin:3001/api/v1/internal")
STORE_TOKEN = os.getenv("STORE_TOKEN", "")
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "5"))
SNAPSHOT_PATH = os.getenv("SNAPSHOT_PATH", "/data/snapshot.yaml")

# Runtime configuration
RUN_MODE = os.getenv("RUN_MODE", "serve").lower().strip()
LISTEN_HOST = os.getenv("LISTEN_HOST", "0.0.0.0")
LISTEN_PORT = int(os.getenv("LISTEN_PORT", "3002"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# =============================================================================
# Logging Setup
# =============================================================================

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Store Registry
# =============================================================================


def create_store() -> ResourceStore:
    """Factory function to create the configured resource store."""
    if STORE_TYPE == "api":
        return ApiResourceStore(STORE_URL, token=STORE_TOKEN, timeout_seconds=STORE_TIMEOUT_SECONDS)
    elif STORE_TYPE == "snapshot":
        return SnapshotResourceStore(SNAPSHOT_PATH)
    else:
        raise ValueError(
            f"Unsupported resource store: '{STORE_TYPE}'. Supported stores: api, snapshot"
        )


def create_compiler() -> TraefikConfigCompiler:
    settings = load_settings(CONFIG_PATH, exit_node_name=EXIT_NODE_NAME)
    return TraefikConfigCompiler(create_store(), settings)


# =============================================================================
# Main
# =============================================================================


def validate_config() -> bool:
    """Validate configuration."""
    errors: List[str] = []

    if STORE_TYPE == "api":
        if not STORE_URL:
            errors.append("STORE_URL is required when STORE_TYPE=api")
        if not STORE_TOKEN:
            logger.warning("STORE_TOKEN not set. Using unauthenticated access.")
    elif STORE_TYPE == "snapshot":
        if not SNAPSHOT_PATH:
            errors.append("SNAPSHOT_PATH is required when STORE_TYPE=snapshot")
    else:
        errors.append(f"Unsupported STORE_TYPE: {STORE_TYPE}. Supported: api, snapshot")

    if RUN_MODE not in ("serve", "once"):
        errors.append(f"Invalid RUN_MODE: {RUN_MODE}. Use 'serve' or 'once'")

    if STORE_TIMEOUT_SECONDS <= 0:
        errors.append("STORE_TIMEOUT_SECONDS must be positive")

    if errors:
        for error in errors:
            logger.error(error)
        return False

    return True


def main():
    """Main entry point."""
    logger.info(f"edge-config: {STORE_TYPE} store -> traefik")

    if not validate_config():
        logger.error("Configuration validation failed")
        sys.exit(1)

    compiler = create_compiler()
    settings = compiler.settings

    logger.info(f"Resource store: {compiler.store.name}")
    logger.info(f"Exit node: {settings.exit_node_name or '(first available)'}")
    logger.info(f"Site types: {', '.join(settings.site_types)}")
    logger.info(f"Raw resources: {'allowed' if settings.allow_raw_resources else 'disabled'}")
    if settings.domains:
        logger.info(f"Domain overrides: {', '.join(sorted(settings.domains))}")
    logger.info(f"Run mode: {RUN_MODE}")

    if RUN_MODE == "once":
        try:
            document = compiler.compile()
        except StoreError as e:
            logger.error(f"Failed to build Traefik config: {e}")
            sys.exit(1)
        json.dump(document, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return

    app = create_app(compiler.compile)
    try:
        uvicorn.run(app, host=LISTEN_HOST, port=LISTEN_PORT, log_level=LOG_LEVEL.lower())
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")


if __name__ == "__main__":
    main()
