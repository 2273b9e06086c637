"""
Module implementing the outbound HTTP requests of the httpRequest command.

A request is made in one of four modes, selected by the method token:

* any regular verb: a plain request whose response body is buffered and returned
* POST: the parameters are sent as a multipart form
* DOWNLOAD: the response body is streamed into a file as it arrives
* UPLOAD: a multipart POST with the content of a file streamed as one of the fields

Progress is reported through the callbacks of the Url. Download progress is reported
for every received chunk. The transport does not report when request bytes actually
leave, so upload progress is sampled on an interval by counting the bytes of the
request body that have been handed to the transport. A callback that returns a falsy
value cancels the transfer, which then fails with TransferAborted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import inspect
import json
import os
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    IO,
    Optional,
    Tuple,
    Union,
)

import httpx

from relayfs.constants import CHUNK_SIZE, PROGRESS_INTERVAL
from relayfs.errors import InvalidArgument, TransferAborted
from relayfs.filesystem.common import ProgressCallback, Url
from relayfs.filesystem.service import LocalFileSystem, MODE_CREATE, MODE_READ
from relayfs.logger import log

# Method tokens of the two streaming modes.
DOWNLOAD = "DOWNLOAD"
UPLOAD = "UPLOAD"

FORM_URLENCODED = "application/x-www-form-urlencoded"
BYTE_ORDER_MARK = "\ufeff"

# Option names as sent by callers, mapped to HttpOptions attributes.
_OPTION_NAMES = {
    "responseType": "response_type",
    "gzip": "gzip",
    "params": "params",
    "headers": "headers",
    "body": "body",
    "bodyType": "body_type",
    "authentication": "authentication",
    "timeOut": "timeout",
    "method": "method",
    "file": "file",
    "_file": "file",
    "_nameField": "name_field",
    "_fileName": "file_name",
    "_fileContentType": "file_content_type",
}


@dataclass
class HttpOptions:
    """Options of a single request."""

    response_type: str = "text"
    gzip: bool = True
    params: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, Any] = field(default_factory=dict)
    body: Any = None
    body_type: Optional[str] = None
    authentication: Optional[Dict[str, str]] = None
    timeout: Optional[float] = None
    method: Optional[str] = None
    file: Any = None
    name_field: str = "file"
    file_name: Optional[str] = None
    file_content_type: Optional[str] = None

    @staticmethod
    def load(options: Optional[Dict[str, Any]]) -> HttpOptions:
        """Load the options of a request, ignoring unknown and null values."""
        config = HttpOptions()

        for key, value in (options or {}).items():
            name = _OPTION_NAMES.get(key)

            if name is not None and value is not None:
                setattr(config, name, value)

        config.headers = {str(k).lower(): v for k, v in config.headers.items()}

        return config


@dataclass
class HttpResponse:
    """Outcome of a request. The body is None for successful downloads."""

    status: int
    headers: Dict[str, str]
    body: Union[str, bytes, None] = None


class _CountingStream(httpx.AsyncByteStream):
    """Request body that counts the bytes handed to the transport."""

    def __init__(self, stream: Any):
        self._stream = stream
        self.sent = 0
        self.ended = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._stream:
            self.sent += len(chunk)
            yield chunk

        self.ended = True

    async def aclose(self) -> None:
        if isinstance(self._stream, httpx.AsyncByteStream):
            await self._stream.aclose()



def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', "%22").replace("\r\n", "%0D%0A")


class _UploadStream(httpx.AsyncByteStream):
    """
    Multipart form body with the content of an open file as its last field.

    The file is read in CHUNK_SIZE blocks through the run function, so that reading
    never blocks the event loop.
    """

    def __init__(
        self,
        run: Callable[..., Awaitable[Any]],
        filesystem: LocalFileSystem,
        source: IO[bytes],
        size: int,
        fields: Dict[str, Union[str, bytes]],
        name: str,
        filename: Optional[str],
        content_type: str,
    ):
        self._run = run
        self._fs = filesystem
        self._source = source
        self._size = size

        self.boundary = os.urandom(16).hex()

        head = b""

        for key, value in fields.items():
            if isinstance(value, str):
                value = value.encode("utf-8")

            head += self._part_header(f'name="{_quote(key)}"') + value + b"\r\n"

        disposition = f'name="{_quote(name)}"'

        if filename is not None:
            disposition += f'; filename="{_quote(filename)}"'

        self._head = head + self._part_header(disposition, content_type)
        self._tail = f"\r\n--{self.boundary}--\r\n".encode("ascii")

    def _part_header(
        self, disposition: str, content_type: Optional[str] = None
    ) -> bytes:
        lines = [f"--{self.boundary}", f"Content-Disposition: form-data; {disposition}"]

        if content_type is not None:
            lines.append(f"Content-Type: {content_type}")

        return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")

    @property
    def headers(self) -> Dict[str, str]:
        length = len(self._head) + self._size + len(self._tail)

        return {
            "content-type": f"multipart/form-data; boundary={self.boundary}",
            "content-length": str(length),
        }

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self._head

        while True:
            chunk = await self._run(self._fs.read, self._source, CHUNK_SIZE, None)

            if not chunk:
                break

            yield chunk

        yield self._tail


class _Transfer:
    """State of one request that is shared with its upload progress sampler."""

    def __init__(self) -> None:
        self.body: Optional[_CountingStream] = None
        self.task: Optional[asyncio.Future] = None
        self.error: Optional[BaseException] = None
        self.download_started = False

    def abort(self, error: BaseException) -> None:
        """Cancel the in-flight request, failing it with the given error."""
        if self.error is None:
            self.error = error

        if self.task is not None:
            self.task.cancel()


async def _notify(callback: ProgressCallback, transferred: int, total: Any) -> bool:
    """Invoke a (possibly asynchronous) progress callback and return its verdict."""
    result = callback(transferred, total)

    if inspect.isawaitable(result):
        result = await result

    return bool(result)


def _content_length(headers: httpx.Headers) -> Optional[int]:
    try:
        return int(headers["content-length"])
    except (KeyError, ValueError):
        return None


def _form_value(value: Any) -> Union[str, bytes]:
    if isinstance(value, (str, bytes)):
        return value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    else:
        return json.dumps(value)


def _has_body(body: Any) -> bool:
    return body is not None and body != "" and body != b""


class TransferEngine:
    """Issues HTTP requests for a driver, streaming files through its worker threads."""

    def __init__(
        self,
        run: Callable[..., Awaitable[Any]],
        filesystem: LocalFileSystem,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        progress_interval: float = PROGRESS_INTERVAL,
    ):
        """
        Instantiate an engine.

        The run function executes a blocking call on the driver's worker threads. The
        transport defaults to the regular network transport of httpx.
        """
        self._run = run
        self._fs = filesystem
        self._transport = transport
        self._progress_interval = progress_interval

    async def request(
        self,
        url: Url,
        method: str,
        options: HttpOptions,
        file_path: Optional[str] = None,
        file_size: Optional[int] = None,
    ) -> HttpResponse:
        """
        Perform a request in the mode selected by the method token.

        For downloads and uploads the absolute path of the file must be given, and for
        uploads also its size. Any failure, be it a transport error or an abort by a
        progress callback, ends in the same cleanup before the error is raised.
        """
        download = method == DOWNLOAD
        upload = method == UPLOAD
        multipart = method in ("POST", UPLOAD)

        if download:
            method = options.method or "GET"
        elif upload:
            method = "POST"

        # An explicit content type turns a POST into a regular request
        if "content-type" in options.headers and not upload:
            multipart = False

        transfer = _Transfer()
        source: Optional[IO[bytes]] = None

        if upload and file_path is not None:
            source = await self._run(self._fs.open, file_path, MODE_READ)

        try:
            upload_body: Optional[_UploadStream] = None

            if source is not None:
                upload_body = _UploadStream(
                    self._run,
                    self._fs,
                    source,
                    file_size or 0,
                    {k: _form_value(v) for k, v in options.params.items()},
                    options.name_field,
                    options.file_name,
                    options.file_content_type or "application/octet-stream",
                )

            kwargs = self._encode(options, multipart, upload_body)

            timeout = httpx.Timeout(options.timeout / 1000) if options.timeout else None

            async with httpx.AsyncClient(
                transport=self._transport, timeout=timeout, follow_redirects=True
            ) as client:
                request = client.build_request(method, url.url, **kwargs)

                transfer.body = _CountingStream(request.stream)
                request.stream = transfer.body

                total = file_size if upload else _content_length(request.headers)

                transfer.task = asyncio.ensure_future(
                    self._exchange(
                        client, request, url, options, transfer, download, file_path
                    )
                )

                watcher: Optional[asyncio.Future] = None

                if url.on_upload_progress is not None:
                    watcher = asyncio.ensure_future(
                        self._watch_upload(
                            url.on_upload_progress, transfer.body, transfer, total
                        )
                    )

                try:
                    return await transfer.task
                except asyncio.CancelledError:
                    if transfer.error is None:
                        raise

                    error: BaseException = transfer.error
                except Exception as e:
                    error = e
                finally:
                    if watcher is not None:
                        watcher.cancel()
        finally:
            if source is not None:
                await self._run(self._fs.close, source)

        await self._discard_failed(url, transfer, error, file_path)

        raise error

    def _encode(
        self, options: HttpOptions, multipart: bool, upload: Optional[_UploadStream]
    ) -> Dict[str, Any]:
        """Build the httpx request arguments, in order of body precedence."""
        headers = dict(options.headers)

        if not options.gzip:
            headers.setdefault("accept-encoding", "identity")

        kwargs: Dict[str, Any] = {"headers": headers}

        if _has_body(options.body):
            body = options.body

            if isinstance(options.body_type, str):
                headers["content-type"] = options.body_type
            elif "content-type" not in headers:
                headers["content-type"] = "application/octet-stream"

            if isinstance(body, (bytes, bytearray, memoryview)):
                kwargs["content"] = bytes(body)
            elif isinstance(body, (dict, list, tuple)):
                try:
                    kwargs["content"] = json.dumps(body)
                except (TypeError, ValueError) as e:
                    raise InvalidArgument(f"Cannot stringify custom body: {e}")

                headers["content-type"] = "application/json"
            elif isinstance(body, str):
                kwargs["content"] = body
            else:
                raise InvalidArgument("Custom body must be String, Object or ArrayBuffer")
        elif multipart:
            headers.pop("content-type", None)

            if upload is not None:
                headers.update(upload.headers)
                kwargs["content"] = upload
            else:
                # httpx generates the content type including the boundary
                kwargs["files"] = [
                    (k, (None, _form_value(v))) for k, v in options.params.items()
                ]
        elif headers.get("content-type") == FORM_URLENCODED:
            kwargs["data"] = {k: _form_value(v) for k, v in options.params.items()}
        elif options.params:
            kwargs["params"] = options.params

        return kwargs

    @staticmethod
    def _auth(options: HttpOptions) -> Optional[Tuple[str, str]]:
        """Return basic authentication credentials, if any."""
        auth = options.authentication

        if not auth:
            return None

        return (
            auth.get("username", auth.get("user", "")),
            auth.get("password", auth.get("pass", "")),
        )

    async def _exchange(
        self,
        client: httpx.AsyncClient,
        request: httpx.Request,
        url: Url,
        options: HttpOptions,
        transfer: _Transfer,
        download: bool,
        file_path: Optional[str],
    ) -> HttpResponse:
        """Send the request and receive the response body."""
        response = await client.send(request, stream=True, auth=self._auth(options))

        try:
            body: Union[str, bytes, None] = None

            if download and response.status_code == 200 and file_path is not None:
                await self._save(response, url, transfer, file_path)
            else:
                content = b"".join([chunk async for chunk in self._receive(response, url)])

                if download or options.response_type == "arraybuffer":
                    body = content
                else:
                    body = content.decode(response.encoding or "utf-8", errors="replace")

                    if body.startswith(BYTE_ORDER_MARK):
                        body = body[1:]
        finally:
            await response.aclose()

        return HttpResponse(response.status_code, dict(response.headers), body)

    async def _receive(self, response: httpx.Response, url: Url) -> AsyncIterator[bytes]:
        """Yield the response body, reporting download progress for every chunk."""
        async for chunk in response.aiter_bytes():
            if url.on_download_progress is not None:
                total = _content_length(response.headers)
                received = response.num_bytes_downloaded

                if not await _notify(url.on_download_progress, received, total):
                    raise TransferAborted("download aborted by progress callback")

            yield chunk

    async def _save(
        self, response: httpx.Response, url: Url, transfer: _Transfer, file_path: str
    ) -> None:
        """Stream the response body into the destination file."""
        handle = await self._run(self._fs.open, file_path, MODE_CREATE)
        transfer.download_started = True

        try:
            async for chunk in self._receive(response, url):
                await self._run(self._fs.write, handle, chunk, None)
        finally:
            await self._run(self._fs.close, handle)

    async def _watch_upload(
        self,
        callback: ProgressCallback,
        body: _CountingStream,
        transfer: _Transfer,
        total: Optional[int],
    ) -> None:
        """Sample the number of sent body bytes until the body is sent or aborted."""
        last_sent = 0

        while total is not None:
            await asyncio.sleep(self._progress_interval)

            sent = min(body.sent, total)

            if sent == last_sent:
                continue

            try:
                proceed = await _notify(callback, sent, total)
            except Exception as e:
                transfer.abort(e)
                return

            last_sent = sent

            if not proceed:
                transfer.abort(TransferAborted("upload aborted by progress callback"))
                return

            if body.ended:
                return

    async def _discard_failed(
        self,
        url: Url,
        transfer: _Transfer,
        error: BaseException,
        file_path: Optional[str],
    ) -> None:
        """Complete a failed request by discarding a partial download and logging."""
        if transfer.download_started and file_path is not None:
            try:
                await self._run(self._fs.discard, file_path)
            except OSError as e:
                log.warning(f"failed to remove partial download {file_path}: {e}")

        if isinstance(error, TransferAborted):
            log.info(f"transfer of {url.url} aborted: {error}")
        else:
            log.error(f"request to {url.url} failed: {error!r}")

