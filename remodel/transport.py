"""
==================================================
RemodelTransport: Command Envelopes and Transports
==================================================

This module defines the request/response contract between local proxies and
the remote execution engine. Every operation on a proxy is expressed as a
`Command`, serialized as an envelope, sent through a `CommandTransport` and
answered with a single value coerced to a declared response type.

Classes
=======
    - *Command*: A single remote procedure call addressed to one remote object.
    - *Message*: A framed message exchanged over a stream connection.
    - *CommandTransport*: Base class implementing logging, error wrapping and
    response coercion around a subclass-provided `_request`.
    - *LoopbackTransport*: An in-process bridge that hands envelopes to a local handler.
    - *StreamTransport*: A TCP client speaking length-prefixed frames.
    - *CommandServer*: The engine side of the TCP connection.
"""

import asyncio
import inspect
import logging
import pickle
import random
from dataclasses import dataclass, field
from datetime import datetime
from string import ascii_letters
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

logger_transport = logging.getLogger("RemodelTransport")
logger_server = logging.getLogger("RemodelServer")

# Identity sent for objects the engine has not assigned yet.
UNASSIGNED = '-1'

Envelope = Dict[str, Any]
Handler = Callable[[Envelope], Union[Any, Awaitable[Any]]]


########################################################################
class RemoteEngineError(Exception):
    """The engine answered a command with an error status."""


########################################################################
class TransportFailure(Exception):
    """
    A remote call failed.

    Raised for any failure while sending a command or interpreting its
    response. The failed `function_call` and the targeted `object_index`
    are kept as attributes, the underlying exception is chained as
    `__cause__` and kept in `cause`.
    """

    # ----------------------------------------------------------------------
    def __init__(self, function_call: str, object_index: Any, cause: BaseException):
        """"""
        super().__init__(f"Remote call '{function_call}' on object {object_index!r} failed: {cause}")
        self.function_call = function_call
        self.object_index = object_index
        self.cause = cause


########################################################################
@dataclass
class Command:
    """
    A remote procedure call addressed to one remote object.

    Parameters
    ----------
    function_call : str
        The operation the engine must perform, e.g. ``'forward'`` or ``'create'``.
    object_type : str
        The kind of the target object, e.g. ``'linear'`` or ``'FloatTensor'``.
    object_index : Any
        The remote identity of the target object, ``'-1'`` while unassigned.
    tensor_index_params : list
        Ordered identities and scalars passed as arguments.
    """
    function_call: str
    object_type: str
    object_index: Any = UNASSIGNED
    tensor_index_params: List[Any] = field(default_factory=list)

    # ----------------------------------------------------------------------
    def envelope(self) -> Envelope:
        """
        Build the wire representation of the command.

        Returns
        -------
        dict
            A fresh dictionary with the keys ``functionCall``, ``objectType``,
            ``objectIndex`` and ``tensorIndexParams``.
        """
        return {
            'functionCall': self.function_call,
            'objectType': self.object_type,
            'objectIndex': self.object_index,
            'tensorIndexParams': list(self.tensor_index_params),
        }


########################################################################
@dataclass
class Message:
    """
    A framed message exchanged between a `StreamTransport` and a `CommandServer`.

    Parameters
    ----------
    command : str
        Either ``'command'`` for requests or ``'response'`` for replies.
    data : Any
        The payload, always a dictionary carrying the request ``id``.
    timestamp : datetime
        When the message was created, used for logging round trips.
    """
    command: str
    data: Any
    timestamp: datetime


# ----------------------------------------------------------------------
def _as_float(value: Any) -> Optional[float]:
    """"""
    if value is None:
        return None
    return float(value)


# ----------------------------------------------------------------------
def _as_identity(value: Any) -> Any:
    """"""
    if value is None or isinstance(value, (list, dict)):
        raise TypeError(f"Expected a remote identity, got {value!r}")
    return value


# ----------------------------------------------------------------------
def _as_list(value: Any) -> list:
    """"""
    if not isinstance(value, (list, tuple)):
        raise TypeError(f"Expected a list response, got {value!r}")
    return list(value)


RESPONSE_TYPES: Dict[Optional[str], Callable[[Any], Any]] = {
    None: lambda value: value,
    'string': str,
    'int': int,
    'float': _as_float,
    'FloatTensor': _as_identity,
    'IntTensor': _as_identity,
    'FloatTensor_list': _as_list,
    'IntTensor_list': _as_list,
    'Model_list': _as_list,
    'float_list': _as_list,
}


########################################################################
class CommandTransport:
    """
    Base class for everything able to deliver a `Command` to the engine.

    Subclasses implement `_request`, which receives the wire envelope and
    returns the raw response value or raises. `send` adds logging, response
    coercion and wraps every failure in `TransportFailure`.
    """

    # ----------------------------------------------------------------------
    def __init__(self, name: Optional[str] = None) -> None:
        """"""
        self.name = name or self.__class__.__name__

    # ----------------------------------------------------------------------
    async def send(self, command: Command, expected_type: Optional[str] = 'string') -> Any:
        """
        Send a command and return its coerced response.

        Parameters
        ----------
        command : Command
            The command to deliver.
        expected_type : str, optional
            The response type tag. One of the keys of `RESPONSE_TYPES`;
            ``None`` returns the raw value. Defaults to ``'string'``.

        Returns
        -------
        Any
            The response coerced to `expected_type`.

        Raises
        ------
        ValueError
            If `expected_type` is not a known response type.
        TransportFailure
            If the request fails or the response cannot be coerced.
        """
        if expected_type not in RESPONSE_TYPES:
            raise ValueError(f"Unknown response type: '{expected_type}'")

        envelope = command.envelope()
        logger_transport.debug(
            f"{self.name}: Sending '{command.function_call}' to {command.object_type}_{command.object_index} "
            f"with params {envelope['tensorIndexParams']}."
        )
        try:
            value = await self._request(envelope)
            return RESPONSE_TYPES[expected_type](value)
        except Exception as e:
            raise TransportFailure(command.function_call, command.object_index, e) from e

    # ----------------------------------------------------------------------
    async def _request(self, envelope: Envelope) -> Any:
        """"""
        raise NotImplementedError

    # ----------------------------------------------------------------------
    async def close(self) -> None:
        """"""


########################################################################
class LoopbackTransport(CommandTransport):
    """
    An in-process bridge to an engine living in the same interpreter.

    Envelopes are handed directly to `handler`. An optional latency can be
    simulated, either constant or computed per envelope, which makes
    completion order controllable in tests.
    """

    # ----------------------------------------------------------------------
    def __init__(
        self,
        handler: Handler,
        latency: Union[float, Callable[[Envelope], float]] = 0,
        name: Optional[str] = None,
    ) -> None:
        """
        Parameters
        ----------
        handler : Callable[[dict], Any]
            Sync or async callable receiving the envelope and returning the
            raw response value.
        latency : float or Callable[[dict], float], optional
            Seconds to wait before invoking the handler. Defaults to 0.
        name : str, optional
            Name used in log messages.
        """
        super().__init__(name=name)
        self.handler = handler
        self.latency = latency

    # ----------------------------------------------------------------------
    async def _request(self, envelope: Envelope) -> Any:
        """"""
        delay = self.latency(envelope) if callable(self.latency) else self.latency
        await asyncio.sleep(delay)

        value = self.handler(envelope)
        if inspect.isawaitable(value):
            value = await value
        return value


# ----------------------------------------------------------------------
def _gen_id(size: int = 32) -> str:
    """
    Generate a random identifier made of ASCII letters.

    Parameters
    ----------
    size : int, optional
        The number of characters of the identifier. Defaults to 32.

    Returns
    -------
    str
        The generated identifier.
    """
    return "".join([random.choice(ascii_letters) for _ in range(size)])


# ----------------------------------------------------------------------
async def _write_frame(writer: asyncio.StreamWriter, message: Message, serializer: Callable[[Any], bytes]) -> None:
    """
    Serialize a message and write it prefixed with its 4-byte big-endian length.
    """
    data = serializer(message)
    length = len(data).to_bytes(4, byteorder="big")
    writer.write(length + data)
    await writer.drain()


# ----------------------------------------------------------------------
async def _read_frame(reader: asyncio.StreamReader, deserializer: Callable[[bytes], Any]) -> Message:
    """
    Read one length-prefixed frame and deserialize it.

    Raises
    ------
    asyncio.IncompleteReadError
        If the peer closes the connection in the middle of a frame.
    """
    length_data = await reader.readexactly(4)
    length = int.from_bytes(length_data, byteorder="big")
    data = await reader.readexactly(length)
    return deserializer(data)


# ----------------------------------------------------------------------
def parse_address(address: str) -> Tuple[str, int]:
    """
    Split an address like ``'RemodelEngine@127.0.0.1:65432'`` into host and port.

    The ``name@`` prefix is optional. IPv6 hosts keep their colons, only the
    last one separates the port.
    """
    if '@' in address:
        address = address.split('@', 1)[1]
    host, port = address.rsplit(':', 1)
    return host.strip('[]'), int(port)


########################################################################
class StreamTransport(CommandTransport):
    """
    A TCP client transport.

    Commands are written as length-prefixed serialized `Message` frames and
    matched with their responses through a request/response multiplexer, so
    several commands may be in flight over the same connection. The
    connection is opened lazily on the first command.
    """

    # ----------------------------------------------------------------------
    def __init__(
        self,
        host: str = '127.0.0.1',
        port: int = 65432,
        serializer: Callable[[Any], bytes] = pickle.dumps,
        deserializer: Callable[[bytes], Any] = pickle.loads,
        name: Optional[str] = None,
    ) -> None:
        """
        Parameters
        ----------
        host : str, optional
            The engine host. Defaults to ``'127.0.0.1'``.
        port : int, optional
            The engine port. Defaults to 65432.
        serializer : Callable[[Any], bytes], optional
            Serializes outgoing messages. Defaults to `pickle.dumps`.
        deserializer : Callable[[bytes], Any], optional
            Deserializes incoming messages. Defaults to `pickle.loads`.
        name : str, optional
            Name used in log messages.
        """
        super().__init__(name=name)
        self.host = host
        self.port = int(port)
        self.serializer = serializer
        self.deserializer = deserializer
        self.reader = None
        self.writer = None
        self.lock = asyncio.Lock()
        self.request_response_multiplexer: Dict[str, asyncio.Future] = {}
        self._reader_task = None

    # ----------------------------------------------------------------------
    @classmethod
    def from_address(cls, address: str, **kwargs: Any) -> 'StreamTransport':
        """
        Create a transport from an address string such as ``'RemodelEngine@127.0.0.1:65432'``.
        """
        host, port = parse_address(address)
        return cls(host=host, port=port, **kwargs)

    # ----------------------------------------------------------------------
    def __repr__(self) -> str:
        """"""
        return f"{self.name}@{self.host}:{self.port}"

    # ----------------------------------------------------------------------
    @property
    def connected(self) -> bool:
        """Whether the connection is open."""
        return self.writer is not None and not self.writer.is_closing()

    # ----------------------------------------------------------------------
    async def connect(self) -> None:
        """
        Open the connection to the engine if it is not already open.
        """
        async with self.lock:
            if self.connected:
                return
            self.reader, self.writer = await asyncio.open_connection(self.host, self.port)
            self._reader_task = asyncio.create_task(self._reader_loop())
            logger_transport.debug(f"{self.name}: Connected to {self.host}:{self.port}.")

    # ----------------------------------------------------------------------
    async def close(self) -> None:
        """
        Close the connection and fail every pending request.
        """
        if self.writer is not None and not self.writer.is_closing():
            self.writer.close()
            try:
                await asyncio.wait_for(self.writer.wait_closed(), 1)
            except (asyncio.TimeoutError, ConnectionError):
                logger_transport.debug(f"{self.name}: Timeout occurred while closing connection.")

        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None

        self._fail_pending(ConnectionResetError("Connection closed"))

    # ----------------------------------------------------------------------
    async def _request(self, envelope: Envelope) -> Any:
        """"""
        if not self.connected:
            await self.connect()

        id_ = _gen_id()
        future = asyncio.get_running_loop().create_future()
        self.request_response_multiplexer[id_] = future

        try:
            await _write_frame(
                self.writer,
                Message(command='command', data={'id': id_, 'envelope': envelope}, timestamp=datetime.now()),
                self.serializer,
            )
            message = await future
        finally:
            self.request_response_multiplexer.pop(id_, None)

        logger_transport.debug(
            f"{self.name}: Response for '{envelope['functionCall']}' after "
            f"{(datetime.now() - message.data['timestamp']).total_seconds() * 1000:.1f} ms."
        )

        match message.data['status']:
            case 'ok':
                return message.data['value']
            case 'error':
                raise RemoteEngineError(message.data['error'])
            case status:
                raise RemoteEngineError(f"Unknown response status: '{status}'")

    # ----------------------------------------------------------------------
    async def _reader_loop(self) -> None:
        """
        Read response frames and resolve the matching pending requests.
        """
        try:
            while True:
                message = await _read_frame(self.reader, self.deserializer)
                if message.command != 'response':
                    logger_transport.warning(f"{self.name}: Ignoring unexpected '{message.command}' frame.")
                    continue

                future = self.request_response_multiplexer.get(message.data['id'])
                if future is not None and not future.done():
                    future.set_result(message)

        except (asyncio.IncompleteReadError, ConnectionResetError) as e:
            logger_transport.warning(f"{self.name}: Connection with {self.host}:{self.port} lost: {e}.")
            self.writer.close()
            self._fail_pending(ConnectionResetError(f"Connection with {self.host}:{self.port} lost"))

        except Exception as e:
            logger_transport.error(f"{self.name}: Unreadable response from {self.host}:{self.port}: {e!r}.")
            self.writer.close()
            error = ConnectionError(f"Unreadable response from {self.host}:{self.port}")
            error.__cause__ = e
            self._fail_pending(error)

    # ----------------------------------------------------------------------
    def _fail_pending(self, exc: Exception) -> None:
        """"""
        for future in self.request_response_multiplexer.values():
            if not future.done():
                future.set_exception(exc)


########################################################################
class CommandServer:
    """
    The engine side of a `StreamTransport` connection.

    Accepts TCP connections, reads command frames and answers each one with
    the value returned by `handler`. Every command is dispatched in its own
    task, so slow commands do not block faster ones from other proxies.
    """

    # ----------------------------------------------------------------------
    def __init__(
        self,
        handler: Handler,
        host: str = '127.0.0.1',
        port: int = 65432,
        serializer: Callable[[Any], bytes] = pickle.dumps,
        deserializer: Callable[[bytes], Any] = pickle.loads,
        name: str = 'RemodelEngine',
    ) -> None:
        """
        Parameters
        ----------
        handler : Callable[[dict], Any]
            Sync or async callable executing one envelope and returning the
            raw response value. Exceptions are reported to the client.
        host : str, optional
            The address to bind. Defaults to ``'127.0.0.1'``.
        port : int, optional
            The port to bind. Defaults to 65432.
        serializer : Callable[[Any], bytes], optional
            Defaults to `pickle.dumps`.
        deserializer : Callable[[bytes], Any], optional
            Defaults to `pickle.loads`.
        name : str, optional
            Name used in the address and in log messages.
        """
        self.handler = handler
        self.host = host
        self.port = int(port)
        self.serializer = serializer
        self.deserializer = deserializer
        self.name = name
        self.server = None
        self.writers = []
        self.tasks = set()

    # ----------------------------------------------------------------------
    def __repr__(self) -> str:
        """"""
        return self.address

    # ----------------------------------------------------------------------
    @property
    def address(self) -> str:
        """
        The address of the server in the form ``'RemodelEngine@<IP>:<Port>'``.
        """
        return f"{self.name}@{self.host}:{self.port}"

    # ----------------------------------------------------------------------
    async def start(self) -> None:
        """
        Bind the TCP server and start accepting connections.
        """
        self.server = await asyncio.start_server(
            self.connected,
            self.host,
            self.port,
            reuse_address=True,
        )
        addr = self.server.sockets[0].getsockname()
        self.port = addr[1]
        logger_server.debug(f"{self.name}: Serving at address {addr}.")

    # ----------------------------------------------------------------------
    async def stop(self) -> None:
        """
        Close every client connection and the server socket.
        """
        for writer in self.writers:
            if not writer.is_closing():
                writer.close()
        self.writers = []

        if self.server is not None:
            self.server.close()
            try:
                await asyncio.wait_for(self.server.wait_closed(), timeout=5)
            except asyncio.TimeoutError:
                logger_server.warning(f"{self.name}: Timeout waiting for server to close.")
            self.server = None

    # ----------------------------------------------------------------------
    async def connected(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """"""
        logger_server.debug(f"{self.name}: Accepted connection from {writer.get_extra_info('peername')}.")
        self.writers.append(writer)
        try:
            while True:
                message = await _read_frame(reader, self.deserializer)
                if message.command != 'command':
                    logger_server.warning(f"{self.name}: No processor available for the command '{message.command}'.")
                    continue
                task = asyncio.create_task(self._dispatch(message, writer))
                self.tasks.add(task)
                task.add_done_callback(self.tasks.discard)

        except (asyncio.IncompleteReadError, ConnectionResetError):
            logger_server.debug(f"{self.name}: Connection closed by {writer.get_extra_info('peername')}.")
        finally:
            if writer in self.writers:
                self.writers.remove(writer)
            if not writer.is_closing():
                writer.close()

    # ----------------------------------------------------------------------
    async def _dispatch(self, message: Message, writer: asyncio.StreamWriter) -> None:
        """
        Run one command through the handler and write the reply.
        """
        data = {'id': message.data['id'], 'timestamp': message.timestamp}
        try:
            value = self.handler(message.data['envelope'])
            if inspect.isawaitable(value):
                value = await value
            data.update(status='ok', value=value)
        except Exception as e:
            logger_server.warning(f"{self.name}: Command {message.data['envelope'].get('functionCall')} failed: {e}")
            data.update(status='error', error=f"{e.__class__.__name__}: {e}")

        if writer.is_closing():
            return
        try:
            await _write_frame(writer, Message(command='response', data=data, timestamp=datetime.now()), self.serializer)
        except ConnectionResetError:
            logger_server.warning(f"{self.name}: Connection lost while answering {writer.get_extra_info('peername')}.")
