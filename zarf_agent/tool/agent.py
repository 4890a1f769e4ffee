"""Command line tool that runs the mutating webhook and proxy server."""

import argparse
import logging
from pathlib import Path
import sys
import traceback

import uvicorn

from zarf_agent.app import create_app
from zarf_agent.config import AgentConfig
from zarf_agent.context import AdmissionUidFilter
from zarf_agent.exceptions import ZarfAgentException
from zarf_agent.state import FileStateProvider

_LOGGER = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(admission_uid)s] %(name)s: %(message)s"


def _make_parser() -> argparse.ArgumentParser:
    defaults = AgentConfig()
    parser = argparse.ArgumentParser(
        description="Admission webhook and proxy that redirect workloads to the "
        "airgap mirrors.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
    )
    parser.add_argument(
        "--host", default=defaults.host, help="Address the server binds to"
    )
    parser.add_argument(
        "--port", type=int, default=defaults.port, help="Port the server listens on"
    )
    parser.add_argument(
        "--tls-cert",
        type=Path,
        default=defaults.tls_cert,
        help="Path to the PEM encoded TLS certificate",
    )
    parser.add_argument(
        "--tls-key",
        type=Path,
        default=defaults.tls_key,
        help="Path to the PEM encoded TLS private key",
    )
    parser.add_argument(
        "--state-path",
        type=Path,
        default=defaults.state_path,
        help="Path to the file holding the cluster state",
    )
    return parser


def run(config: AgentConfig, log_level: str) -> None:
    """Serve the application until interrupted."""
    for path in (config.tls_cert, config.tls_key):
        if not path.exists():
            raise ZarfAgentException(f"TLS file does not exist: {path}")
    app = create_app(FileStateProvider(config.state_path))
    _LOGGER.info("Starting the agent on %s:%s", config.host, config.port)
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        ssl_certfile=str(config.tls_cert),
        ssl_keyfile=str(config.tls_key),
        log_level=log_level.lower(),
    )


def main() -> None:
    """Zarf agent command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level, format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        handler.addFilter(AdmissionUidFilter())

    config = AgentConfig(
        host=args.host,
        port=args.port,
        tls_cert=args.tls_cert,
        tls_key=args.tls_key,
        state_path=args.state_path,
    )
    try:
        run(config, args.log_level)
    except ZarfAgentException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("zarf-agent error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
