"""
=============
BlockingProxy
=============

Synchronous access to remote proxies.

Every coroutine method of the wrapped proxy is run to completion on an
event loop, which lets scripts and notebooks use the proxies without
writing `await`. `nest_asyncio` makes this work even from code already
running inside the loop, as in a Jupyter kernel.
"""

import asyncio
import inspect
import logging
from typing import Any, Optional

import nest_asyncio

from remodel.proxy import RemoteObject

logger_blocking = logging.getLogger("RemodelBlocking")


# ----------------------------------------------------------------------
def _event_loop() -> asyncio.AbstractEventLoop:
    """
    Return the running loop, or a new one installed as the current loop.
    """
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        return loop


# ----------------------------------------------------------------------
def _unwrap(value: Any) -> Any:
    """"""
    if isinstance(value, BlockingProxy):
        return value.unwrap()
    return value


########################################################################
class BlockingProxy:
    """
    Wrap a proxy so its coroutine methods block until they complete.

    Results that are proxies, or lists of proxies, are wrapped again on the
    same loop. Plain attributes are returned unchanged.

    Parameters
    ----------
    proxy : RemoteObject
        The proxy to wrap.
    loop : asyncio.AbstractEventLoop, optional
        The loop to run on. Defaults to the running loop or a new one.
    """

    # ----------------------------------------------------------------------
    def __init__(self, proxy: RemoteObject, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """"""
        object.__setattr__(self, "_proxy", proxy)
        object.__setattr__(self, "_loop", loop or _event_loop())
        nest_asyncio.apply(self._loop)

    # ----------------------------------------------------------------------
    def __repr__(self) -> str:
        """"""
        return f"Blocking{self._proxy!r}"

    # ----------------------------------------------------------------------
    def __getattr__(self, attr: str) -> Any:
        """"""
        value = getattr(object.__getattribute__(self, "_proxy"), attr)
        if not inspect.iscoroutinefunction(value):
            return value

        def method(*args, **kwargs):
            args = [_unwrap(arg) for arg in args]
            kwargs = {key: _unwrap(arg) for key, arg in kwargs.items()}
            logger_blocking.debug(f"Running {attr} on {self._proxy!r}.")
            return self._wrap(self._loop.run_until_complete(value(*args, **kwargs)))

        return method

    # ----------------------------------------------------------------------
    def __setattr__(self, name: str, value: Any) -> None:
        """"""
        setattr(object.__getattribute__(self, "_proxy"), name, value)

    # ----------------------------------------------------------------------
    def _wrap(self, result: Any) -> Any:
        """"""
        if isinstance(result, RemoteObject):
            return BlockingProxy(result, self._loop)
        if isinstance(result, list) and any(isinstance(item, RemoteObject) for item in result):
            return [self._wrap(item) for item in result]
        return result

    # ----------------------------------------------------------------------
    def unwrap(self) -> RemoteObject:
        """Return the wrapped proxy."""
        return self._proxy
