"""Operator delivery channel for webhook-minted credentials.

A credential minted by the billing webhook has no HTTP caller to return the
raw secret to, so after commit the secret is handed to a sink that an
operator can read.

Sink selection (get_default_key_delivery_sink):
  PROVISIONED_KEYS_FILE set -> FileKeyDeliverySink (JSON lines, mode 0600)
  otherwise                 -> StreamKeyDeliverySink (stderr)

Sinks write directly, not through logging: the log pipeline redacts
secrets, and the whole point of this channel is to carry one.
"""

import json
import logging
import os
import sys
from typing import Optional, Protocol, TextIO, runtime_checkable

from forkforge_api.auth.token_codec import secret_last4
from forkforge_api.config.env import get_provisioned_keys_file
from forkforge_api.stores.base import IssuedCredential

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyDeliverySink(Protocol):
    """Minimal interface for all key-delivery sinks."""

    def deliver(self, issued: IssuedCredential, *, billing_ref: str, event_id: str) -> None:
        """Hand the raw secret to the operator.

        Raises:
            OSError: If the write fails.
        """
        ...


def _delivery_record(issued: IssuedCredential, billing_ref: str, event_id: str) -> dict:
    return {
        "event_id": event_id,
        "billing_ref": billing_ref,
        "user_id": issued.user_id,
        "credential_id": issued.credential_id,
        "key": issued.secret,
        "created_at": issued.created_at.isoformat(),
    }


class StreamKeyDeliverySink:
    """Write one JSON line per credential to a text stream (default stderr)."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    def deliver(self, issued: IssuedCredential, *, billing_ref: str, event_id: str) -> None:
        stream = self._stream or sys.stderr
        stream.write(json.dumps(_delivery_record(issued, billing_ref, event_id)) + "\n")
        stream.flush()
        logger.info(
            "Provisioned credential delivered",
            extra={
                "event": "credential.delivered",
                "sink": "stream",
                "credential_id": issued.credential_id,
                "last4": secret_last4(issued.secret),
            },
        )


class FileKeyDeliverySink:
    """Append JSON lines to an operator-only file."""

    def __init__(self, path: str) -> None:
        self._path = path

    def deliver(self, issued: IssuedCredential, *, billing_ref: str, event_id: str) -> None:
        line = json.dumps(_delivery_record(issued, billing_ref, event_id)) + "\n"
        fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as fh:
            fh.write(line)
        logger.info(
            "Provisioned credential delivered",
            extra={
                "event": "credential.delivered",
                "sink": "file",
                "path": self._path,
                "credential_id": issued.credential_id,
                "last4": secret_last4(issued.secret),
            },
        )


def get_default_key_delivery_sink() -> KeyDeliverySink:
    """Return the sink selected by environment configuration."""
    path = get_provisioned_keys_file()
    if path:
        return FileKeyDeliverySink(path)
    return StreamKeyDeliverySink()
