"""Forward decoded service messages to the orchestrating server."""

from __future__ import annotations

import logging
import os
import queue
import sys
import threading
import time
from typing import TYPE_CHECKING, Optional, TextIO

import requests

from .command_output import MessageForwarder
from .service_messages import ServiceMessage, write_service_message

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)


class StdoutMessageForwarder:
    """Re-emit messages on the agent's own stdout, where the server reads them."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream or sys.stdout

    def __call__(self, message: ServiceMessage) -> None:
        write_service_message(message.name, self.stream, **message.attributes)


class HttpMessageForwarder:
    """POST each message as JSON to the server's message endpoint."""

    def __init__(self, config: "ServerConfig", session: Optional[requests.Session] = None):
        if not config.url:
            raise ValueError("Server URL is required for HTTP forwarding")

        self.config = config
        self.session = session or requests.Session()

        proxy = config.proxy or os.environ.get("HTTPS_PROXY") or os.environ.get("HTTP_PROXY")
        if proxy:
            self.session.proxies = {"http": proxy, "https": proxy}
            logger.info("Message forwarder using proxy: %s", proxy)

        self.url = config.url.rstrip("/") + "/messages"
        self.headers = {"Content-Type": "application/json"}
        if config.token:
            self.headers["Authorization"] = f"Bearer {config.token}"

    def __call__(self, message: ServiceMessage) -> None:
        self.send(message)

    def send(self, message: ServiceMessage) -> bool:
        """Deliver ``message``; returns False when every attempt failed."""
        body = message.to_dict()
        if self.config.deployment_id:
            body["deploymentId"] = self.config.deployment_id

        for attempt in range(self.config.max_retries):
            try:
                response = self.session.post(
                    self.url,
                    json=body,
                    headers=self.headers,
                    timeout=self.config.timeout,
                )
                if response.status_code == 429 or response.status_code >= 500:
                    wait_time = self.config.retry_backoff * (attempt + 1)
                    logger.warning(
                        "Server returned %s for %s message, retrying in %ss",
                        response.status_code,
                        message.name,
                        wait_time,
                    )
                    time.sleep(wait_time)
                    continue
                response.raise_for_status()
                return True
            except requests.exceptions.RequestException as exc:
                logger.warning("Failed to forward %s message: %s", message.name, exc)
                if attempt < self.config.max_retries - 1:
                    time.sleep(self.config.retry_backoff * (attempt + 1))

        logger.error("Giving up forwarding %s message after %d attempts", message.name, self.config.max_retries)
        return False


_STOP = object()


class QueuedMessageForwarder:
    """
    Hand messages to ``forward`` on a worker thread.

    The caller (usually the runner's reader thread) only enqueues, so a slow
    server never slows down draining the child's output pipe. Messages are
    delivered in the order they were queued. :meth:`close` waits for the
    queue to drain.
    """

    def __init__(self, forward: MessageForwarder) -> None:
        self.forward = forward
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._closed = False
        self._worker = threading.Thread(target=self._drain, name="message-forwarder", daemon=True)
        self._worker.start()

    def __call__(self, message: ServiceMessage) -> None:
        if self._closed:
            raise RuntimeError("Message forwarder is closed")
        self._queue.put(message)

    def _drain(self) -> None:
        while True:
            message = self._queue.get()
            try:
                if message is _STOP:
                    return
                try:
                    self.forward(message)
                except Exception as exc:
                    logger.error("Forwarding %s message failed: %s", message.name, exc)
            finally:
                self._queue.task_done()

    def close(self, timeout: Optional[float] = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        self._worker.join(timeout)
