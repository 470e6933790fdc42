"""
==============
DeferredHandle
==============

Every proxy owns a `DeferredHandle` tracking the remote identity of the
object it stands for. A proxy built around a known identity is ready at
once; otherwise the handle runs a creation coroutine exactly once and every
operation waits for it to finish.

    uncommitted --start()--> resolving --identity--> ready
                                 |
                                 +----exception----> failed
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

logger_handle = logging.getLogger("RemodelHandle")


########################################################################
class HandleState(Enum):
    UNCOMMITTED = 'uncommitted'
    RESOLVING = 'resolving'
    READY = 'ready'
    FAILED = 'failed'


########################################################################
class DeferredHandle:
    """
    The lifecycle of a remote identity.

    Parameters
    ----------
    identity : Any, optional
        A known remote identity. When given the handle starts ``READY`` and
        `create` is never called.
    create : Callable[[], Awaitable[Any]], optional
        Coroutine function returning the identity assigned by the engine.
        Required when `identity` is not given.
    name : str, optional
        Label used in log messages.
    """

    # ----------------------------------------------------------------------
    def __init__(
        self,
        identity: Any = None,
        create: Optional[Callable[[], Awaitable[Any]]] = None,
        name: str = '',
    ) -> None:
        """"""
        self.name = name
        self.error: Optional[BaseException] = None
        self._identity = identity
        self._create = create
        self._task: Optional[asyncio.Task] = None

        if identity is not None:
            self.state = HandleState.READY
        elif create is None:
            raise ValueError("A DeferredHandle needs either an identity or a creation coroutine.")
        else:
            self.state = HandleState.UNCOMMITTED

    # ----------------------------------------------------------------------
    def __repr__(self) -> str:
        """"""
        return f"<DeferredHandle {self.name} {self.state.value} id={self._identity!r}>"

    # ----------------------------------------------------------------------
    @property
    def identity(self) -> Any:
        """The remote identity, ``None`` until the handle is ready."""
        return self._identity

    # ----------------------------------------------------------------------
    def ready(self) -> bool:
        """"""
        return self.state is HandleState.READY

    # ----------------------------------------------------------------------
    def start(self) -> bool:
        """
        Issue the creation request if it has not been issued yet.

        Must be called with a running event loop. Calling it on a handle that
        is not ``UNCOMMITTED`` does nothing.

        Returns
        -------
        bool
            True if this call started the creation.
        """
        if self.state is not HandleState.UNCOMMITTED:
            return False

        self.state = HandleState.RESOLVING
        self._task = asyncio.ensure_future(self._resolve())
        logger_handle.debug(f"{self.name}: Creation requested.")
        return True

    # ----------------------------------------------------------------------
    def start_soon(self) -> None:
        """
        Start the creation when constructed inside a running event loop.

        Outside of a loop the handle stays ``UNCOMMITTED`` until the first
        `wait_ready`.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self.start()

    # ----------------------------------------------------------------------
    async def wait_ready(self) -> Any:
        """
        Wait until the remote identity is known.

        Returns
        -------
        Any
            The remote identity.

        Raises
        ------
        Exception
            The error recorded when the creation failed, re-raised on every
            call; the creation is never retried.
        """
        if self.state is HandleState.UNCOMMITTED:
            self.start()

        if self.state is HandleState.RESOLVING:
            # Cancelling one waiter must not cancel the shared creation.
            await asyncio.shield(self._task)

        if self.state is HandleState.FAILED:
            raise self.error
        return self._identity

    # ----------------------------------------------------------------------
    def rebind(self, identity: Any) -> None:
        """
        Point a ready handle at another remote identity.
        """
        if self.state is not HandleState.READY:
            raise RuntimeError(f"{self.name}: Only a ready handle can be rebound, state is {self.state.value}.")
        logger_handle.debug(f"{self.name}: Rebound from {self._identity!r} to {identity!r}.")
        self._identity = identity

    # ----------------------------------------------------------------------
    async def _resolve(self) -> None:
        """"""
        try:
            identity = await self._create()
        except Exception as e:
            logger_handle.error(f"{self.name}: Creation failed: {e}")
            self.error = e
            self.state = HandleState.FAILED
            return

        self._identity = identity
        self.state = HandleState.READY
        logger_handle.debug(f"{self.name}: Ready with identity {identity!r}.")
