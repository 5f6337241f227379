"""CLI entry point for wecom-relay."""

from __future__ import annotations

import argparse
import sys

import uvicorn

from wecom_relay.app import RelayApp
from wecom_relay.config import AppConfig, load_config, resolve_secrets
from wecom_relay.errors import ConfigError
from wecom_relay.log import setup_logging
from wecom_relay.messenger.crypto import decode_aes_key
from wecom_relay.server.routes import create_app


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="wecom-relay",
        description="WeCom chat gateway relaying messages to LLM providers",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    for name, help_text in (
        ("start", "Start the HTTP gateway"),
        ("config-check", "Validate configuration and secrets"),
        ("assistant-info", "Show provider and token budget per assistant"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "assistant-info":
        _assistant_info(args.config, args.env)
    elif args.command == "start":
        _run(args.config, args.env)


def _load(config_path: str, env_path: str) -> AppConfig:
    """Load, validate and resolve secrets; exit 1 on any error."""
    try:
        return resolve_secrets(load_config(config_path, env_path))
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load(config_path, env_path)
    try:
        for assistant in config.assistants:
            decode_aes_key(assistant.key)
        decode_aes_key(config.accountant.key)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Configuration valid: {config_path}")
    print(f"  Storage: {config.storage_path}")
    print(f"  Admin: {config.admin_account}")
    print(f"  Listen: {config.server.host}:{config.server.port}")
    print(f"  Providers configured: {len(config.providers)}")
    print(f"  Assistants configured: {len(config.assistants)}")
    for assistant in config.assistants:
        provider = config.provider(assistant.provider_id)
        print(f"    - {assistant.agent_id} {assistant.name} [{provider.name or provider.id}]")
    print(f"  Accountant agent: {config.accountant.agent_id}")


def _assistant_info(config_path: str, env_path: str) -> None:
    """Show provider and budget information for each assistant."""
    config = _load(config_path, env_path)

    print("Assistant Configuration")
    print("=" * 50)
    for assistant in config.assistants:
        provider = config.provider(assistant.provider_id)
        print(f"\n  Assistant: {assistant.agent_id} ({assistant.name})")
        print(f"    Provider   : {provider.name or provider.id}")
        print(f"    Window     : {provider.max_tokens}")
        print(f"    Reserved   : {assistant.token_reservation}")
        print(f"    Budget     : {provider.max_tokens - assistant.token_reservation}")
        print(f"    Encoding   : {provider.encoding}")
        print(f"    Prices     : {provider.prompt_token_price} / {provider.completion_token_price} per 1K")
    print()


def _run(config_path: str, env_path: str) -> None:
    """Load config and serve the gateway until interrupted."""
    config = _load(config_path, env_path)
    setup_logging(config.log_level, json_output=config.log_json)

    try:
        relay = RelayApp(config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    app = create_app(relay)
    # uvicorn installs SIGINT/SIGTERM handlers and runs the lifespan hooks.
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
