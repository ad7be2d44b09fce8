#!/usr/bin/env python3
"""
Scan Request Dispatcher

Turns resolved start options into a single StartRequest, submits it to the
scanner backend and relays the backend's status stream to an output sink,
one "Status: <message>" line per update, in the order the backend sent them.

The backend channel is an HTTP endpoint that accepts the request as JSON and
answers with newline delimited JSON status updates for as long as the scan
start phase runs.

Author: Scan Launcher Contributors
License: MIT
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional, Protocol, Tuple

import httpx
from rich.console import Console
from rich.text import Text

from launcher_config import LauncherSettings
from scan_options import (
    DEFAULT_TEST_NUMBER_OF_SITES,
    LIST_DELIMITER,
    AuthenticationMode,
    Microsoft365Environment,
    Mode,
    ResolvedParameters,
    parse_enum,
)

logger = logging.getLogger(__name__)

START_PATH = "/api/scanner/start"
TEST_NUMBER_OF_SITES_PROPERTY = "testnumberofsites"

StatusSink = Callable[[str], None]


class ChannelTransportFailure(Exception):
    """The scanner channel failed while submitting or streaming a request."""


@dataclass(frozen=True)
class PropertyRequest:
    property: str
    type: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"property": self.property, "type": self.type, "value": self.value}


@dataclass(frozen=True)
class StartRequest:
    """Wire form of a scan start; every field is already rendered to text."""

    mode: str
    tenant: str
    environment: str
    sites_list: str
    sites_file: str
    auth_mode: str
    application_id: str
    cert_path: str = ""
    cert_file: str = ""
    cert_password: str = ""
    properties: Tuple[PropertyRequest, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "mode": self.mode,
            "tenant": self.tenant,
            "environment": self.environment,
            "sitesList": self.sites_list,
            "sitesFile": self.sites_file,
            "authMode": self.auth_mode,
            "applicationId": self.application_id,
            "certPath": self.cert_path,
            "certFile": self.cert_file,
            "certPassword": self.cert_password,
            "properties": [prop.to_dict() for prop in self.properties],
        }

    def property_value(self, name: str) -> Optional[str]:
        for prop in self.properties:
            if prop.property == name:
                return prop.value
        return None


@dataclass(frozen=True)
class StatusUpdate:
    status: str

    @classmethod
    def from_wire(cls, line: str) -> "StatusUpdate":
        """Decode one NDJSON line; anything that is not a status object is kept as text"""
        try:
            payload = json.loads(line)
        except ValueError:
            return cls(line)
        if isinstance(payload, dict) and "status" in payload:
            return cls(str(payload["status"]))
        return cls(line)


@dataclass(frozen=True)
class DispatchResult:
    completed: bool
    status_count: int


def _text(value) -> str:
    return "" if value is None else str(value)


def build_start_request(resolved: ResolvedParameters, include_test_options: bool = False) -> StartRequest:
    """Render resolved options to their wire form"""
    properties: List[PropertyRequest] = []
    if include_test_options and resolved.mode == Mode.TEST:
        properties.append(PropertyRequest(
            property=TEST_NUMBER_OF_SITES_PROPERTY,
            type="int",
            value=str(resolved.test_number_of_sites),
        ))

    return StartRequest(
        mode=resolved.mode.value,
        tenant=_text(resolved.tenant),
        environment=resolved.environment.value,
        sites_list=LIST_DELIMITER.join(resolved.sites_list) if resolved.sites_list else "",
        sites_file=_text(resolved.sites_file),
        auth_mode=resolved.auth_mode.value,
        application_id=str(resolved.application_id),
        cert_path=_text(resolved.cert_path),
        cert_file=_text(resolved.cert_pfx_file),
        cert_password=_text(resolved.cert_pfx_password),
        properties=tuple(properties),
    )


def parse_start_request(request: StartRequest) -> ResolvedParameters:
    """Inverse of build_start_request: read a wire request back into typed options"""
    test_sites = request.property_value(TEST_NUMBER_OF_SITES_PROPERTY)
    return ResolvedParameters(
        mode=parse_enum(Mode, request.mode),
        tenant=request.tenant or None,
        environment=parse_enum(Microsoft365Environment, request.environment),
        sites_list=tuple(request.sites_list.split(LIST_DELIMITER)) if request.sites_list else None,
        sites_file=Path(request.sites_file) if request.sites_file else None,
        auth_mode=parse_enum(AuthenticationMode, request.auth_mode),
        application_id=uuid.UUID(request.application_id),
        cert_path=request.cert_path or None,
        cert_pfx_file=Path(request.cert_file) if request.cert_file else None,
        cert_pfx_password=request.cert_password or None,
        test_number_of_sites=int(test_sites) if test_sites else DEFAULT_TEST_NUMBER_OF_SITES,
    )


class ScannerChannel(Protocol):
    def start(self, request: StartRequest) -> AsyncIterator[StatusUpdate]:
        ...


class HttpScannerChannel:
    """
    Scanner channel over HTTP with a streamed NDJSON response.

    The httpx client belongs to the caller; this channel never closes it.

    Args:
        client (httpx.AsyncClient): Client configured with the backend base URL
        start_path (str): Path of the start endpoint
    """
    def __init__(self, client: httpx.AsyncClient, start_path: str = START_PATH):
        self.client = client
        self.start_path = start_path

    async def start(self, request: StartRequest) -> AsyncIterator[StatusUpdate]:
        try:
            async with self.client.stream("POST", self.start_path, json=request.to_dict()) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    line = line.strip()
                    if line:
                        yield StatusUpdate.from_wire(line)
        except httpx.HTTPStatusError as e:
            raise ChannelTransportFailure(
                f"Scanner rejected the start request: HTTP {e.response.status_code}"
            ) from e
        except httpx.TransportError as e:
            raise ChannelTransportFailure(f"{type(e).__name__}: {e}") from e


@asynccontextmanager
async def connect_scanner(settings: LauncherSettings) -> AsyncIterator[HttpScannerChannel]:
    """Open an HTTP channel to the scanner backend for the duration of the block"""
    # Start streams stay open as long as the backend reports progress
    timeout = httpx.Timeout(None, connect=settings.connect_timeout)
    async with httpx.AsyncClient(base_url=settings.scanner_url, timeout=timeout) as client:
        logger.info(f"Connected to scanner at {settings.scanner_url}")
        yield HttpScannerChannel(client)


class ConsoleStatusSink:
    """Writes relayed status lines to a rich console"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def __call__(self, line: str):
        # Backend text is printed literally, never as rich markup
        self.console.print(Text(line, style="cyan"))


async def _next_update(iterator: AsyncIterator[StatusUpdate]) -> Optional[StatusUpdate]:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


async def _discard(task: asyncio.Future):
    task.cancel()
    await asyncio.wait([task])
    if not task.cancelled():
        # Retrieve the outcome so a late failure is not reported as unhandled
        task.exception()


async def relay_status(
    stream: AsyncIterator[StatusUpdate],
    sink: StatusSink,
    cancel: Optional[asyncio.Event] = None,
) -> DispatchResult:
    """
    Forward every status update from the stream to the sink, in order.

    Returns when the stream ends (completed) or when ``cancel`` is set (not
    completed, stream closed). Channel failures propagate to the caller after
    the lines received so far have been written. Cancelling the calling task
    closes the stream before the CancelledError propagates.
    """
    iterator = stream.__aiter__()
    count = 0
    pending: List[asyncio.Future] = []
    try:
        while True:
            if cancel is None:
                update = await _next_update(iterator)
            else:
                next_task = asyncio.ensure_future(_next_update(iterator))
                cancel_task = asyncio.ensure_future(cancel.wait())
                pending = [next_task, cancel_task]
                await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                if not next_task.done():
                    logger.warning(f"Status relay cancelled after {count} updates")
                    return DispatchResult(completed=False, status_count=count)
                pending = []
                await _discard(cancel_task)
                update = next_task.result()

            if update is None:
                logger.debug(f"Status stream completed after {count} updates")
                return DispatchResult(completed=True, status_count=count)

            sink(f"Status: {update.status}")
            count += 1
    finally:
        # The stream can only be closed once no read is in flight
        for task in pending:
            await _discard(task)
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()


async def dispatch_start(
    resolved: ResolvedParameters,
    channel: ScannerChannel,
    sink: StatusSink,
    include_test_options: bool = False,
    cancel: Optional[asyncio.Event] = None,
) -> DispatchResult:
    """Build the start request, submit it over the channel and relay its status stream"""
    request = build_start_request(resolved, include_test_options=include_test_options)
    logger.info(
        f"Submitting {request.mode} scan (tenant: {request.tenant or 'n/a'}, "
        f"auth: {request.auth_mode}, properties: {len(request.properties)})"
    )
    return await relay_status(channel.start(request), sink, cancel=cancel)
