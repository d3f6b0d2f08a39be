"""CLI entry point for termbridge."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from termbridge import __version__
from termbridge.config import Config


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="termbridge",
        description="Bridge WebSocket clients to shell sessions on a pseudo-terminal",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Override configuration directory",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    # ── init ──────────────────────────────────────────────────────────
    init_p = sub.add_parser("init", help="Write a configuration file")
    init_p.add_argument(
        "--port", type=int, default=8081, help="Server port (default: 8081)"
    )
    init_p.add_argument(
        "--shell",
        default="",
        help="Shell to run for each session (default: $SHELL, then sh)",
    )
    init_p.add_argument(
        "--tls",
        action="store_true",
        help="Generate a self-signed certificate and serve wss://",
    )
    init_p.add_argument(
        "--hostname",
        default="localhost",
        help="Hostname for the TLS certificate (default: localhost)",
    )

    # ── server ────────────────────────────────────────────────────────
    server_p = sub.add_parser("server", help="Start the terminal server")
    server_p.add_argument("--host", default=None, help="Override bind address")
    server_p.add_argument("--port", type=int, default=None, help="Override port")
    server_p.add_argument("--shell", default=None, help="Override shell command")
    server_p.add_argument(
        "--cwd", default=None, help="Override the shell's working directory"
    )

    # ── connect ───────────────────────────────────────────────────────
    conn_p = sub.add_parser("connect", help="Attach this terminal to a server")
    conn_p.add_argument(
        "url", nargs="?", default=None, help="Server URL (default from config)"
    )
    conn_p.add_argument(
        "--ca-cert",
        type=Path,
        default=None,
        help="Certificate to trust for wss:// URLs",
    )

    # ── show-fingerprint ──────────────────────────────────────────────
    sub.add_parser(
        "show-fingerprint",
        help="Show the TLS certificate fingerprint",
    )

    args = parser.parse_args(argv)
    config_dir = Config.config_dir(args.config_dir)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "init":
        _cmd_init(args, config_dir)
    elif args.command == "server":
        _cmd_server(args, config_dir)
    elif args.command == "connect":
        _cmd_connect(args, config_dir)
    elif args.command == "show-fingerprint":
        _cmd_show_fingerprint(config_dir)


# ── Command implementations ──────────────────────────────────────────────


def _cmd_init(args: argparse.Namespace, config_dir: Path) -> None:
    config = Config()
    config.server.port = args.port
    config.server.shell = args.shell

    if args.tls:
        from termbridge.tls import generate_self_signed_cert

        cert_path = Config.cert_path(config_dir)
        key_path = Config.key_path(config_dir)
        print(f"Generating TLS certificate for '{args.hostname}'...")
        fingerprint = generate_self_signed_cert(
            cert_path, key_path, hostname=args.hostname
        )
        print(f"  Certificate: {cert_path}")
        print(f"  Private key: {key_path}")
        print(f"  Fingerprint: {fingerprint}")
        config.server.tls_cert = str(cert_path)
        config.server.tls_key = str(key_path)
        config.client.url = f"wss://{args.hostname}:{args.port}"
        config.client.ca_cert = str(cert_path)
    else:
        config.client.url = f"ws://localhost:{args.port}"

    config_file = config.save(config_dir)
    print(f"\nConfiguration saved to: {config_file}")
    print("\nTo start the server:  termbridge server")
    print(f"To attach a terminal: termbridge connect {config.client.url}")


def _cmd_server(args: argparse.Namespace, config_dir: Path) -> None:
    from termbridge.server import TerminalServer

    config = Config.load(config_dir).apply_env()

    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.shell:
        config.server.shell = args.shell
    if args.cwd:
        config.server.cwd = args.cwd

    server = TerminalServer(config)

    try:
        asyncio.run(server.serve())
    except KeyboardInterrupt:
        print("\nServer stopped.")


def _cmd_connect(args: argparse.Namespace, config_dir: Path) -> None:
    from termbridge.client import BridgeState, LocalTerminal, TerminalBridge
    from termbridge.tls import create_client_ssl_context

    config = Config.load(config_dir).apply_env()
    url = args.url or config.client.url
    ca_cert = args.ca_cert or (Path(config.client.ca_cert) if config.client.ca_cert else None)

    if not sys.stdin.isatty():
        print("connect needs an interactive terminal.", file=sys.stderr)
        sys.exit(1)

    async def _run() -> BridgeState:
        bridge = TerminalBridge(
            url,
            LocalTerminal(),
            initial_resize_delay=config.client.initial_resize_delay,
            ssl_context=create_client_ssl_context(ca_cert) if url.startswith("wss://") else None,
        )
        return await bridge.run()

    print(f"Connecting to {url}...")
    print("Press Ctrl+] to disconnect.\n")
    try:
        state = asyncio.run(_run())
    except KeyboardInterrupt:
        state = None
    print("\nDisconnected.")
    if state is BridgeState.ERRORED:
        sys.exit(1)


def _cmd_show_fingerprint(config_dir: Path) -> None:
    config = Config.load(config_dir)
    cert_path = Path(config.server.tls_cert) if config.server.tls_cert else Config.cert_path(config_dir)
    if not cert_path.exists():
        print("No certificate found. Run 'termbridge init --tls' first.", file=sys.stderr)
        sys.exit(1)

    from termbridge.tls import get_cert_fingerprint
    fp = get_cert_fingerprint(cert_path)
    print(f"TLS Certificate Fingerprint (SHA-256):\n  {fp}")


if __name__ == "__main__":
    main()
