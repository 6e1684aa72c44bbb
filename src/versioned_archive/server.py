"""MCP server for inspecting versioned envelopes.

This server exposes offline tools for working with the tagged envelopes of
registered containers: deriving type ids, peeking headers, reading payloads
and encoding new envelopes.
"""

import importlib
import json
import logging
import sys
from typing import Any, Iterable, Optional

from mcp.server.fastmcp import FastMCP

from versioned_archive.archive import describe, layout_of, structure
from versioned_archive.config import Config, load_config
from versioned_archive.envelope import peek
from versioned_archive.identity import derive_id
from versioned_archive.registry import ContainerRegistry, default_registry

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def create_server(
    config: Optional[Config] = None,
    registry: Optional[ContainerRegistry] = None,
) -> FastMCP:
    """Create and configure the MCP server with all tools.

    Args:
        config: Optional configuration. If not provided, uses defaults.
        registry: Containers the tools can see. Defaults to every
            container declared in the process.

    Returns:
        Configured FastMCP server instance.
    """
    if config is None:
        config = Config()
    if registry is None:
        registry = default_registry

    mcp = FastMCP(config.server_name)

    # Store config on server for access by tools
    mcp._config = config
    mcp._registry = registry

    def parse_hex(data_hex: str) -> bytes:
        if len(data_hex) > config.max_hex_length:
            raise ValueError(
                f"Envelope exceeds max_envelope_size ({config.max_envelope_size} bytes)"
            )
        try:
            return bytes.fromhex(data_hex)
        except ValueError as e:
            raise ValueError(f"Invalid hex string: {e}") from e

    def describe_container(container: type) -> dict:
        versions = []
        for variant, payload_type in zip(container.VARIANTS, container.PAYLOAD_TYPES):
            versions.append({
                "version": variant.version_id,
                "variant": variant.__name__,
                "payload_type": payload_type.__name__,
                "fields": describe(layout_of(payload_type)),
            })
        return {
            "name": registry.key(container),
            "type_id": container.ARCHIVE_TYPE_ID,
            "type_id_hex": f"{container.ARCHIVE_TYPE_ID:08x}",
            "versions": versions,
        }

    # =========================================================================
    # Identity and headers
    # =========================================================================

    @mcp.tool()
    def derive_type_id(name: str) -> dict:
        """Derive the 32-bit type id for a container name.

        Args:
            name: Bare container class name

        Returns:
            Dictionary with 'type_id' and 'type_id_hex'.
        """
        type_id = derive_id(name)
        return {"name": name, "type_id": type_id, "type_id_hex": f"{type_id:08x}"}

    @mcp.tool()
    def peek_envelope(data_hex: str) -> dict:
        """Read the header of a tagged envelope without validating its payload.

        Args:
            data_hex: Hex-encoded envelope bytes

        Returns:
            Dictionary with 'type_id', 'version', the registered containers
            carrying that type id and whether the version is declared.
        """
        try:
            type_id, version = peek(parse_hex(data_hex))
        except ValueError as e:
            return {"error": str(e)}

        matches = registry.find(type_id)
        return {
            "type_id": type_id,
            "type_id_hex": f"{type_id:08x}",
            "version": version,
            "containers": [registry.key(c) for c in matches],
            "version_supported": matches[0].is_valid_version_id(version) if matches else None,
        }

    @mcp.tool()
    def list_containers() -> dict:
        """List registered containers with their versions and payload fields."""
        containers = [describe_container(c) for c in registry]
        return {"count": len(containers), "containers": containers}

    # =========================================================================
    # Envelope reading and writing
    # =========================================================================

    @mcp.tool()
    def read_envelope(data_hex: str, container: Optional[str] = None) -> dict:
        """Validate a tagged envelope and return its payload.

        Args:
            data_hex: Hex-encoded envelope bytes
            container: Container name. If omitted, the container is chosen
                by the type id in the header.

        Returns:
            Dictionary with 'container', 'version', 'variant' and 'payload'
            (bytes fields as hex).
        """
        try:
            data = parse_hex(data_hex)
            if container:
                target = registry.get(container)
            else:
                type_id, _ = peek(data)
                matches = registry.find(type_id)
                if not matches:
                    return {"error": f"No registered container with type_id {type_id}"}
                target = matches[0]
            entry = target.get_ref_from_tagged_bytes(data)
        except (ValueError, LookupError) as e:
            logger.debug("read_envelope failed: %s", e)
            return {"error": str(e)}

        with entry.unwrap() as view:
            payload = view.to_dict()
        return {
            "container": registry.key(target),
            "version": entry.version_id,
            "variant": type(entry).__name__,
            "payload": _jsonable(payload),
        }

    @mcp.tool()
    def encode_envelope(container: str, variant: str, payload_json: str) -> dict:
        """Encode a payload as a tagged envelope of one container variant.

        Args:
            container: Container name
            variant: Variant name (e.g. 'V2')
            payload_json: Payload fields as a JSON object (bytes fields as hex)

        Returns:
            Dictionary with 'data_hex', 'type_id', 'version' and 'size'.
        """
        try:
            target = registry.get(container)
            by_name = {v.__name__: v for v in target.VARIANTS}
            if variant not in by_name:
                return {
                    "error": f"Unknown variant {variant!r} of {target.__qualname__}; "
                    f"expected one of {', '.join(by_name)}"
                }
            variant_cls = by_name[variant]
            payload = structure(
                target.PAYLOAD_TYPES[variant_cls.version_id], json.loads(payload_json)
            )
            data = target.to_tagged_bytes(variant_cls(payload))
        except (ValueError, LookupError) as e:
            logger.debug("encode_envelope failed: %s", e)
            return {"error": str(e)}

        return {
            "data_hex": data.hex(),
            "type_id": target.ARCHIVE_TYPE_ID,
            "version": variant_cls.version_id,
            "size": len(data),
        }

    return mcp


def load_container_modules(modules: Iterable[str]) -> list[str]:
    """Import modules so the containers they declare register themselves."""
    loaded = []
    for name in modules:
        importlib.import_module(name)
        logger.info("Loaded container module %s", name)
        loaded.append(name)
    return loaded


def main():
    """Entry point for the MCP server."""
    from pathlib import Path

    # Try to load config from standard locations
    config_paths = [
        Path("versioned-archive.toml"),
        Path.home() / ".config" / "versioned-archive" / "config.toml",
    ]

    config = None
    for path in config_paths:
        if path.exists():
            config = load_config(path)
            break

    if config is None:
        config = Config()

    # Stdout carries the MCP stdio transport
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    load_container_modules(config.container_modules)
    server = create_server(config)
    logger.info("Serving %d registered containers", len(server._registry))
    server.run()


if __name__ == "__main__":
    main()
