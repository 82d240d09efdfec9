import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from pydantic import ValidationError

from workloadsteal.agent import StealAgent
from workloadsteal.config import load_config
from workloadsteal.log import configure_logging

app = typer.Typer(no_args_is_help=True)


def _overrides(**options) -> dict:
    return {key: value for key, value in options.items() if value is not None}


def serve(
    tls_key_path: Optional[Path] = typer.Option(
        None, "--tls-key-path", help="Absolute path to the TLS key [default: /etc/certs/tls.key]"
    ),
    tls_cert_path: Optional[Path] = typer.Option(
        None, "--tls-cert-path", help="Absolute path to the TLS certificate [default: /etc/certs/tls.crt]"
    ),
    insecure: Optional[bool] = typer.Option(
        None, "--insecure/--secure", help="Serve plain HTTP instead of requiring TLS certificates"
    ),
    debug: Optional[bool] = typer.Option(None, "--debug/--no-debug", help="Enable debug logging"),
):
    try:
        config = load_config(
            **_overrides(tls_key_path=tls_key_path, tls_cert_path=tls_cert_path, insecure=insecure, debug=debug)
        )
    except ValidationError as e:
        logger.error(f"Invalid configuration:\n{e}")
        sys.exit(1)

    configure_logging(config.debug, config.log_json)
    logger.debug("Configuration: {}", config.export_json())

    if config.insecure:
        logger.warning("TLS disabled, serving plain HTTP; the API server will not call these webhooks")

    try:
        agent = StealAgent(config)
        asyncio.run(agent.run())
    except Exception as e:
        logger.exception("Failed to start workload steal agent: {}", e)
        raise


def print_config():
    try:
        config = load_config()
    except ValidationError as e:
        logger.error(f"Invalid configuration:\n{e}")
        sys.exit(1)

    print(config.export_json())


app.command(name="serve", help="Run the admission webhooks and the pod watcher.")(serve)
app.command(name="print-config", help="Print the resolved configuration.")(print_config)

if __name__ == "__main__":
    app()
