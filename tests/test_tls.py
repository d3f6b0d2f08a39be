"""Tests for TLS certificate generation and wss:// serving."""

import tempfile
from pathlib import Path

import pytest
import websockets

from conftest import FakeEmulator, make_config, read_output_until, start_server
from termbridge.client import BridgeState, TerminalBridge
from termbridge.protocol import input_msg
from termbridge.tls import (
    create_client_ssl_context,
    generate_self_signed_cert,
    get_cert_fingerprint,
)


def test_generate_cert():
    with tempfile.TemporaryDirectory() as tmp:
        cert = Path(tmp) / "cert.pem"
        key = Path(tmp) / "key.pem"
        fp = generate_self_signed_cert(cert, key, hostname="localhost")

        assert cert.exists()
        assert key.exists()
        assert ":" in fp  # Colon-separated hex fingerprint


def test_fingerprint_consistency():
    with tempfile.TemporaryDirectory() as tmp:
        cert = Path(tmp) / "cert.pem"
        key = Path(tmp) / "key.pem"
        fp1 = generate_self_signed_cert(cert, key)
        fp2 = get_cert_fingerprint(cert)
        assert fp1 == fp2


def test_key_permissions():
    with tempfile.TemporaryDirectory() as tmp:
        cert = Path(tmp) / "cert.pem"
        key = Path(tmp) / "key.pem"
        generate_self_signed_cert(cert, key)
        assert oct(key.stat().st_mode & 0o777) == "0o600"


@pytest.mark.asyncio
async def test_session_over_wss(tmp_path):
    cert = tmp_path / "server.crt"
    key = tmp_path / "server.key"
    generate_self_signed_cert(cert, key)
    config = make_config(tmp_path, tls_cert=str(cert), tls_key=str(key))
    assert config.tls_enabled

    server, url = await start_server(config)
    url = url.replace("ws://", "wss://")
    try:
        async with websockets.connect(url, ssl=create_client_ssl_context(cert)) as ws:
            await ws.send(input_msg("echo over-tls\n"))
            await read_output_until(ws, "\nover-tls")
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_bridge_rejects_untrusted_certificate(tmp_path):
    cert = tmp_path / "server.crt"
    key = tmp_path / "server.key"
    generate_self_signed_cert(cert, key)
    server, url = await start_server(
        make_config(tmp_path, tls_cert=str(cert), tls_key=str(key))
    )
    url = url.replace("ws://", "wss://")

    try:
        bridge = TerminalBridge(url, FakeEmulator(), ssl_context=create_client_ssl_context())
        assert await bridge.run() is BridgeState.ERRORED
    finally:
        server.close()
        await server.wait_closed()
