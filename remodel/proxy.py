"""
============
RemoteObject
============

Base class for every local stand-in of an object living in the engine.

A `RemoteObject` holds the transport it talks through, the kind tag the
engine knows it by, and a `DeferredHandle` for its remote identity. All
commands are built by `cmd` and sent by `call`, which waits for the
handle first.
"""

import asyncio
from typing import Any, Iterable, List, Optional

from remodel.handle import DeferredHandle
from remodel.transport import UNASSIGNED, Command, CommandTransport


########################################################################
class RemoteObject:
    """
    A local handle on a remote object.

    Parameters
    ----------
    transport : CommandTransport
        The transport used for every command of this object.
    kind : str, optional
        The kind tag of the remote object. Defaults to the class `kind`.
    id : Any, optional
        A known remote identity. When omitted the object is created remotely
        with `params` as creation parameters.
    params : Iterable, optional
        Creation parameters. Remote objects among them are replaced by their
        identity once they are ready.
    """

    kind = 'object'

    # ----------------------------------------------------------------------
    def __init__(
        self,
        transport: CommandTransport,
        kind: Optional[str] = None,
        id: Any = None,
        params: Iterable[Any] = (),
    ) -> None:
        """"""
        self.transport = transport
        self.lock = asyncio.Lock()
        if kind is not None:
            self.kind = kind

        params = list(params)
        self.handle = DeferredHandle(
            identity=id,
            create=lambda: self._create(params),
            name=f"{self.kind}",
        )
        self.handle.start_soon()

    # ----------------------------------------------------------------------
    def __repr__(self) -> str:
        """"""
        return f"{self.__class__.__name__}({self.kind}_{self.id if self.id is not None else '?'})"

    # ----------------------------------------------------------------------
    @property
    def id(self) -> Any:
        """The remote identity, ``None`` while it is not known yet."""
        return self.handle.identity

    # ----------------------------------------------------------------------
    async def wait_ready(self) -> Any:
        """
        Wait for the remote identity and return it.
        """
        return await self.handle.wait_ready()

    # ----------------------------------------------------------------------
    def cmd(self, function_call: str, params: Iterable[Any] = ()) -> Command:
        """
        Build a command targeting this object.
        """
        return Command(
            function_call=function_call,
            object_type=self.kind,
            object_index=UNASSIGNED if self.id is None else self.id,
            tensor_index_params=list(params),
        )

    # ----------------------------------------------------------------------
    async def call(self, function_call: str, params: Iterable[Any] = (), expected_type: Optional[str] = 'string') -> Any:
        """
        Wait until ready, then send one command targeting this object.

        Commands of one object are sent one at a time, in the order `call` was
        invoked. Remote objects among `params` are replaced by their identity.

        Parameters
        ----------
        function_call : str
            The remote operation.
        params : Iterable, optional
            The ordered parameters of the operation.
        expected_type : str, optional
            The response type tag. Defaults to ``'string'``.

        Returns
        -------
        Any
            The coerced response.
        """
        async with self.lock:
            await self.wait_ready()
            params = await identities(params)
            return await self.transport.send(self.cmd(function_call, params), expected_type)

    # ----------------------------------------------------------------------
    async def _create(self, params: List[Any]) -> Any:
        """
        Ask the engine to create the object and return the assigned identity.
        """
        resolved = await identities(params)
        return await self.transport.send(self.cmd('create', resolved), 'string')


# ----------------------------------------------------------------------
async def identities(values: Iterable[Any]) -> List[Any]:
    """
    Replace every remote object in `values` by its identity, waiting for each.

    Other values are kept as they are, in order.
    """
    resolved = []
    for value in values:
        if isinstance(value, RemoteObject):
            value = await value.wait_ready()
        resolved.append(value)
    return resolved
