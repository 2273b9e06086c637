"""
RPC client and server for driver commands based on ZeroMQ and MessagePack.

relayfs exposes its driver to remote callers by carrying command envelopes over the
network. Every call is a single envelope ({"cmd", "args", "server"}) and every reply is
either the return value of the command or the exception it raised. The requirements
are similar to those of a remote file system:

* Low overhead per call
    * Commands like read() and write() are issued in long sequences.
    * HTTP based protocols add per request overhead for no benefit here.
* Concurrent handling of calls
    * A slow download must not hold up a quick fileExists() from another caller.
    * Commands are therefore handled by separate asyncio tasks on the server.
* Faithful transport of errors
    * Builtin exceptions like FileNotFoundError are recreated as the same type.
    * Driver errors like PermissionDenied are recreated as the same type.
* Shared secret authentication and protocol version checks

MessagePack supports fast and compact serialization, including timezone aware
datetimes through its timestamp extension. ZeroMQ takes care of framing and
reconnection with its ROUTER and REQUEST/REPLY patterns.
"""

from abc import ABC
import asyncio
import builtins
from dataclasses import asdict, is_dataclass
from enum import auto, Enum
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

import msgpack
import semver
import zmq
import zmq.asyncio

from relayfs.constants import PROTOCOL_VERSION
from relayfs.errors import error_types
from relayfs.filesystem.common import Directory, File, reference, Url
from relayfs.logger import log, summarize
from relayfs.transfer import HttpResponse


class Encoding:
    """
    MessagePack codec for command arguments, results and errors.

    Resources travel as tagged descriptors, registered dataclasses as their fields, and
    exceptions as their type name and arguments. Datetimes use the MessagePack
    timestamp extension and come back as timezone aware UTC datetimes.
    """

    def __init__(self, *dataclasses: type):
        """Create a codec that can carry the given dataclass types."""
        self._dataclasses: Dict[str, type] = {}
        self._exceptions: Dict[str, type] = {}

        for dataclass in dataclasses:
            self.register_dataclass(dataclass)

        for exc_type in error_types():
            self.register_exception(exc_type)

    def register_dataclass(self, dataclass: type) -> None:
        if not is_dataclass(dataclass):
            raise TypeError(f"{dataclass.__qualname__} is not a dataclass")

        self._dataclasses[dataclass.__qualname__] = dataclass

    def register_exception(self, exc_type: type) -> None:
        """Register a non-builtin exception type to be recreated faithfully."""
        self._exceptions[exc_type.__qualname__] = exc_type

    def pack(self, obj: Any) -> bytes:
        return msgpack.packb(obj, default=self.serialize_obj, datetime=True)

    def unpack(self, data: bytes) -> Any:
        return msgpack.unpackb(data, object_hook=self.deserialize_obj, timestamp=3)

    def serialize_obj(self, obj: Any) -> Any:
        """Fallback for objects that MessagePack cannot represent by itself."""
        if isinstance(obj, BaseException):
            return self._serialize_exception(obj)
        elif isinstance(obj, (File, Directory, Url)):
            return reference(obj)
        elif type(obj).__qualname__ in self._dataclasses:
            return {"__data__": {"type": type(obj).__qualname__, "data": asdict(obj)}}
        elif isinstance(obj, (bytearray, memoryview)):
            return bytes(obj)
        else:
            raise ValueError(f"unserializable object {obj}")

    def deserialize_obj(self, obj: Dict[str, Any]) -> Any:
        """
        Recreate the exceptions and dataclasses in a decoded map.

        Resource descriptors are left as they are, they only have meaning to a driver.
        """
        if "__exception__" in obj:
            return self._deserialize_exception(obj["__exception__"])
        elif "__data__" in obj:
            return self._deserialize_dataclass(obj["__data__"])
        else:
            return obj

    @staticmethod
    def _serialize_exception(exc: BaseException) -> Dict:
        args = list(exc.args)

        # OSError only keeps the file name outside of args
        if isinstance(exc, OSError) and exc.filename is not None and len(args) == 2:
            args.append(exc.filename)

        return {
            "__exception__": {
                "name": type(exc).__qualname__,
                "args": [a if isinstance(a, (str, int, float)) else str(a) for a in args],
            }
        }

    def _deserialize_exception(self, info: Dict[str, Any]) -> BaseException:
        """
        Recreate an exception from its name and arguments.

        Driver errors and builtin exceptions (like FileNotFoundError) keep their type,
        anything else becomes a generic Exception with the original arguments.
        """
        name, args = info["name"], info["args"]

        if name in self._exceptions:
            return self._exceptions[name](*args)

        builtin_exc = getattr(builtins, name, None)

        if isinstance(builtin_exc, type) and issubclass(builtin_exc, BaseException):
            return builtin_exc(*args)
        else:
            return Exception(*args)

    def _deserialize_dataclass(self, info: Dict[str, Any]) -> Any:
        """Recreate a dataclass, which must have been registered with this codec."""
        type_name = info["type"]

        if type_name not in self._dataclasses:
            raise TypeError(f"unknown dataclass '{type_name}'")

        try:
            return self._dataclasses[type_name](**info["data"])
        except TypeError as e:
            raise TypeError(f"failed to deserialize {type_name}: {e}")


class ReturnType(Enum):
    """Type of result for an RPC call."""

    NORMAL = auto()
    EXCEPTION = auto()
    TOKEN_ERROR = auto()
    PROTOCOL_ERROR = auto()


class InvalidTokenError(RuntimeError):
    """Exception raised when an RPC call is made with a wrong authentication token."""


class IncompatibleProtocolError(RuntimeError):
    """Exception raised when client and server speak different protocol versions."""


def protocol_compatible(version: str, expected: str = PROTOCOL_VERSION) -> bool:
    """Check if a protocol version has the same major version as the expected one."""
    try:
        parsed = semver.VersionInfo.parse(version)
    except (TypeError, ValueError):
        return False

    return parsed.major == semver.VersionInfo.parse(expected).major


class Base(ABC):
    """Shared logic between RPC client and server implementation."""

    def __init__(self) -> None:
        self._encoding = Encoding(HttpResponse)


class Server(Base):
    """
    RPC server that hands command envelopes to an asynchronous handler.

    Example:
    ```
    dispatcher = Dispatcher(FileSystemDriver("/srv/data"))
    server = rpc.Server(dispatcher.dispatch)
    asyncio.run(server.serve("tcp://0.0.0.0:7745"))
    ```
    """

    def __init__(
        self,
        handler: Callable[[Any], Awaitable[Any]],
        token: Optional[str] = None,
    ):
        """
        Instantiate an RPC server for the given envelope handler.

        If a token is specified then clients will need to be initialized with that same
        token to be allowed to make calls.
        """
        super().__init__()

        self.context = zmq.asyncio.Context()

        self.handler = handler
        self.token = token

    async def serve(self, endpoint: str) -> None:
        """
        Start listening and handling calls for clients on the specified endpoint.

        Every call is handled in its own task, so a slow command never delays the
        others. Runs until cancelled, which also cancels the calls in progress.
        """
        socket = self.context.socket(zmq.ROUTER)
        socket.bind(endpoint)

        tasks: Set[asyncio.Future] = set()

        log.info(f"serving on {endpoint}")

        try:
            while True:
                identity, *frames = await socket.recv_multipart()

                task = asyncio.ensure_future(self._handle(socket, identity, frames))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
        finally:
            for task in tasks:
                task.cancel()

            await asyncio.gather(*tasks, return_exceptions=True)

            socket.close(linger=0)

    async def _handle(
        self, socket: zmq.asyncio.Socket, identity: bytes, frames: List[bytes]
    ) -> None:
        """Handle a single call and route the reply back to its client."""
        *delimiter, data = frames

        reply = await self._reply(data)

        await socket.send_multipart([identity, *delimiter, reply])

    async def _reply(self, data: bytes) -> bytes:
        try:
            token, protocol, envelope = self._encoding.unpack(data)
        except Exception as e:
            log.warning(f"received malformed call: {e}")
            return self._pack(ReturnType.EXCEPTION, ValueError(f"malformed call: {e}"))

        if token != self.token:
            # Authentication token mismatch between client/server
            return self._pack(ReturnType.TOKEN_ERROR, None)
        elif not protocol_compatible(protocol):
            return self._pack(ReturnType.PROTOCOL_ERROR, PROTOCOL_VERSION)

        # Invoke the handler and return the response (value/raised exception)
        try:
            if envelope is None:
                ret = None
            else:
                ret = await self.handler(envelope)
        except Exception as e:
            return self._pack(ReturnType.EXCEPTION, e)

        return self._pack(ReturnType.NORMAL, ret)

    def _pack(self, typ: ReturnType, value: Any) -> bytes:
        try:
            return self._encoding.pack((typ.value, value))
        except (TypeError, ValueError) as e:
            return self._encoding.pack((ReturnType.EXCEPTION.value, e))


class Client(Base):
    """
    RPC client to send commands to a driver exposed by an RPC server.

    A single client can be used by multiple threads and will internally create multiple
    socket connections as needed.

    Example:
    ```
    driver = rpc.Client("tcp://localhost:7745")
    text = driver.call("readAll", File("notes.txt"))
    text = driver.readAll(File("notes.txt"))
    ```

    The close command clashes with close() of the client itself, so it has to be sent
    through call().
    """

    def __init__(
        self,
        endpoint: str,
        token: Optional[str] = None,
        timeout_ms: int = -1,
        protocol: str = PROTOCOL_VERSION,
    ) -> None:
        """
        Instantiate an RPC client for the driver at the given endpoint.

        The endpoint should follow the format of endpoint in zmq_connect
        (http://api.zeromq.org/3-2:zmq-connect), for example "tcp://localhost:7745".
        """
        super().__init__()

        self.endpoint = endpoint
        self.token = token
        self.timeout_ms = timeout_ms
        self.protocol = protocol

        self.context = zmq.Context()

        self._socket_pool: Dict[threading.Thread, zmq.Socket] = {}
        self._socket_pool_lock = threading.Lock()

    def _socket(self) -> zmq.Socket:
        """
        Return a socket to be used for the current thread.

        Each thread needs its own socket because REQUEST-REPLY need to happen in
        lockstep per socket.
        """
        t = threading.current_thread()

        with self._socket_pool_lock:
            if t not in self._socket_pool:
                sock = self.context.socket(zmq.REQ)

                sock.setsockopt(zmq.RCVTIMEO, self.timeout_ms)
                sock.setsockopt(zmq.SNDTIMEO, self.timeout_ms)

                sock.connect(self.endpoint)

                self._socket_pool[t] = sock

            return self._socket_pool[t]

    def _discard_socket(self) -> None:
        """
        Close the socket of the current thread.

        A REQ socket that timed out waiting for a reply cannot send again, so the next
        call of the thread starts over with a new one.
        """
        with self._socket_pool_lock:
            sock = self._socket_pool.pop(threading.current_thread(), None)

        if sock is not None:
            sock.close(linger=0)

    def ping(self) -> None:
        """Check if the service is available and speaks a compatible protocol."""
        self._request(None)

    def call(self, cmd: str, *args: Any, server: Any = None) -> Any:
        """
        Execute a command on the remote driver.

        Returns the result of the command or raises the exception that it raised.
        """
        t_call = time.time()

        ret = self._request({"cmd": cmd, "args": list(args), "server": server})

        # Explicit check before logging because _summarize_args is relatively slow
        if log.isEnabledFor(logging.DEBUG):
            t_millis = round((time.time() - t_call) * 1000)
            log.debug(f"rpc::{cmd}{self._summarize_args(args)} - {t_millis} ms")

        return ret

    def _request(self, envelope: Optional[Dict[str, Any]]) -> Any:
        """
        Send an envelope and wait for its reply.

        ZeroMQ connections are stateless so the token is sent again with every call.
        """
        sock = self._socket()

        try:
            sock.send(self._encoding.pack((self.token, self.protocol, envelope)))
            typ, ret = self._encoding.unpack(sock.recv())
        except zmq.ZMQError:
            self._discard_socket()
            raise IOError("rpc call timed out")

        if typ == ReturnType.NORMAL.value:
            return ret
        elif typ == ReturnType.EXCEPTION.value:
            raise ret
        elif typ == ReturnType.TOKEN_ERROR.value:
            raise InvalidTokenError("token mismatch between client and server")
        elif typ == ReturnType.PROTOCOL_ERROR.value:
            raise IncompatibleProtocolError(
                f"incompatible protocol ({self.protocol} != {ret})"
            )
        else:
            raise ValueError(f"unexpected return type {typ}")

    def close(self) -> None:
        """Close the client sockets and their ZeroMQ context."""
        with self._socket_pool_lock:
            for sock in self._socket_pool.values():
                sock.close(linger=0)

            self._socket_pool.clear()

        if not self.context.closed:
            self.context.destroy()

    def __del__(self) -> None:
        if "_socket_pool_lock" in self.__dict__:
            self.close()

    @property
    def socket_count(self) -> int:
        """Return the number of sockets for this client."""
        with self._socket_pool_lock:
            return len(self._socket_pool)

    @staticmethod
    def _summarize_args(args: tuple) -> Tuple[str, ...]:
        """Summarize a tuple of command arguments."""
        return tuple([summarize(arg) for arg in args])

    def __getattr__(self, name: str) -> Callable[..., Any]:
        """Retrieve a wrapper to call the remote command with the given wire name."""
        if name.startswith("_"):
            raise AttributeError(name)

        def fn(*args: Any) -> Any:
            return self.call(name, *args)

        return fn
