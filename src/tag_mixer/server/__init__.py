"""Webhook front-end for triggering pipeline runs over HTTP."""

from __future__ import annotations


def main(host: str = "0.0.0.0", port: int | None = None) -> None:
    """Launch the webhook server."""
    from tag_mixer.server.app import run_server

    run_server(host=host, port=port)
