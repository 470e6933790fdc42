"""
==========
Optimizers
==========

Proxies for optimizers living in the engine. An optimizer is created from
the parameter tensors it updates plus its hyperparameters; the training loop
only ever passes its identity along.
"""

from typing import Any, Iterable, Optional

from remodel.proxy import RemoteObject, identities
from remodel.transport import CommandTransport


########################################################################
class Optimizer(RemoteObject):
    """
    A remote optimizer.

    Creation parameters are the list of parameter identities followed by
    the hyperparameters, in the order the subclass declares them.
    """

    # ----------------------------------------------------------------------
    def __init__(
        self,
        transport: CommandTransport,
        kind: str,
        parameters: Iterable[Any] = (),
        hyperparameters: Iterable[Any] = (),
        id: Any = None,
    ) -> None:
        """"""
        self.parameters = list(parameters)
        params = [] if id is not None else [self.parameters, *hyperparameters]
        super().__init__(transport, kind=kind, id=id, params=params)

    # ----------------------------------------------------------------------
    async def _create(self, params):
        """"""
        parameters, *hyperparameters = params
        resolved = await identities(parameters)
        return await self.transport.send(self.cmd('create', [resolved, *hyperparameters]), 'string')

    # ----------------------------------------------------------------------
    async def zero_grad(self) -> None:
        """Reset the gradients of every parameter."""
        await self.call('zero_grad')

    # ----------------------------------------------------------------------
    async def step(self) -> None:
        """Apply one update to every parameter."""
        await self.call('step')


########################################################################
class SGD(Optimizer):
    """Stochastic gradient descent with optional momentum and weight decay."""

    # ----------------------------------------------------------------------
    def __init__(
        self,
        transport: CommandTransport,
        parameters: Iterable[Any] = (),
        lr: float = 0.01,
        momentum: float = 0,
        decay: float = 0,
        id: Optional[Any] = None,
    ) -> None:
        """"""
        super().__init__(transport, 'sgd', parameters, [lr, momentum, decay], id=id)


########################################################################
class Adam(Optimizer):

    # ----------------------------------------------------------------------
    def __init__(
        self,
        transport: CommandTransport,
        parameters: Iterable[Any] = (),
        lr: float = 0.001,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-8,
        id: Optional[Any] = None,
    ) -> None:
        """"""
        super().__init__(transport, 'adam', parameters, [lr, beta1, beta2, epsilon], id=id)
