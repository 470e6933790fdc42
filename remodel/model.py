"""
============
RemodelModel
============

Proxies for models, layers and loss functions living in the engine.

A single `Model` class covers every layer and loss kind; the kind tag is the
only difference between a linear layer and a ReLU on this side of the wire.
Two variants change behavior: `Sequential`, whose children live remotely and
are summarized together, and `Policy`, which pairs a model with an optimizer
and picks how to produce actions.

Remote identities are turned back into concrete proxies by `resolve`, which
asks the engine for the kind of the object and dispatches through `KINDS`.

Classes
=======
    - *Model*: Generic proxy for any remote model, layer or loss.
    - *Sequential*: A remote ordered container of models.
    - *Policy*: A model and an optimizer acting as a reinforcement learning policy.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from remodel.optim import Optimizer
from remodel.proxy import RemoteObject
from remodel.tensor import FloatTensor, IntTensor, Tensor
from remodel.training import fit
from remodel.transport import CommandTransport

logger_model = logging.getLogger("RemodelModel")

SINGLE = '_________________________________________________________________\n'
HEADER = 'Layer (type)                 Output Shape              Param #   \n'
DOUBLE = '=================================================================\n'


########################################################################
class UnsupportedKind(Exception):
    """The engine reported a kind with no registered proxy."""

    # ----------------------------------------------------------------------
    def __init__(self, kind: str):
        """"""
        super().__init__(f"Unsupported Layer Type: '{kind}'.")
        self.kind = kind


########################################################################
class UnknownStateType(Exception):
    """A policy was asked to act with a state type other than discrete or continuous."""

    # ----------------------------------------------------------------------
    def __init__(self, state_type: Any):
        """"""
        super().__init__(f"Unknown State Type: {state_type}")
        self.state_type = state_type


# ----------------------------------------------------------------------
def _footer(n_params: int) -> str:
    """"""
    return (
        f"Total params: {n_params}\n"
        f"Trainable params: {n_params}\n"
        f"Non-trainable params: 0\n"
    )


########################################################################
class Model(RemoteObject):
    """
    A proxy for a remote model, layer or loss function.

    Parameters
    ----------
    transport : CommandTransport
        The transport of the engine holding the model.
    kind : str, optional
        The kind tag, e.g. ``'linear'``. Defaults to ``'model'``, which is
        what a wrapper around an identity of unknown kind uses.
    id : Any, optional
        Identity of an existing remote model. When omitted the model is
        created remotely.
    params : Iterable, optional
        Creation parameters, ignored when `id` is given.
    """

    kind = 'model'
    category = 'model'
    output_shape = '(dynamic)'
    sink: Callable[[str], Any] = print

    # ----------------------------------------------------------------------
    def __init__(
        self,
        transport: CommandTransport,
        kind: Optional[str] = None,
        id: Any = None,
        params: Iterable[Any] = (),
    ) -> None:
        """"""
        super().__init__(transport, kind=kind, id=id, params=[] if id is not None else params)

    # ----------------------------------------------------------------------
    async def forward(self, *inputs: Tensor) -> FloatTensor:
        """
        Run the model on the given tensors.

        Parameters
        ----------
        *inputs : Tensor
            Input tensors, sent in order by identity. Loss functions take the
            prediction first and the target second.

        Returns
        -------
        FloatTensor
            The output tensor.
        """
        return FloatTensor(self.transport, id=await self.call('forward', inputs, 'FloatTensor'))

    # ----------------------------------------------------------------------
    async def feed(self, *inputs: Tensor) -> Tensor:
        """"""
        return await self.forward(*inputs)

    # ----------------------------------------------------------------------
    async def parameters(self) -> List[FloatTensor]:
        """
        Fetch the learnable parameter tensors of the model, in engine order.
        """
        ids = await self.call('params', expected_type='FloatTensor_list')
        return [FloatTensor(self.transport, id=id_) for id_ in ids]

    # ----------------------------------------------------------------------
    async def num_parameters(self) -> int:
        """
        Fetch the number of learnable scalars of the model.
        """
        return await self.call('param_count', expected_type='int')

    # ----------------------------------------------------------------------
    async def models(self) -> List['Model']:
        """
        Fetch the children of the model as concrete proxies.

        The engine only returns identities, so each child is resolved on its
        own; the result keeps the engine order.

        Raises
        ------
        UnsupportedKind
            If a child has a kind with no registered proxy.
        """
        ids = await self.call('models', expected_type='Model_list')
        return list(await asyncio.gather(*(resolve(self.transport, id_) for id_ in ids)))

    # ----------------------------------------------------------------------
    async def length(self) -> int:
        """"""
        return len(await self.call('models', expected_type='Model_list'))

    # ----------------------------------------------------------------------
    async def set_id(self, new_id: Any) -> 'Model':
        """
        Point this proxy at another remote object.

        Only the identity changes; kind and readiness stay as they are.

        Returns
        -------
        Model
            This proxy.
        """
        async with self.lock:
            await self.wait_ready()
            await self.transport.send(self.cmd('set_id', [new_id]), 'string')
            self.handle.rebind(new_id)
        return self

    # ----------------------------------------------------------------------
    async def layer_type(self) -> str:
        """
        Ask the engine for its own kind tag of this object.

        It can differ from `kind` when this proxy is a generic wrapper.
        """
        return await self.call('model_type', expected_type='string')

    # ----------------------------------------------------------------------
    async def activation(self) -> FloatTensor:
        """"""
        return FloatTensor(self.transport, id=await self.call('activation', expected_type='FloatTensor'))

    # ----------------------------------------------------------------------
    async def fit(self, input: Any, target: Any, criterion: 'Model', optim: Optimizer, batch_size: int, **kwargs: Any) -> Optional[float]:
        """
        Train the model remotely. See `remodel.training.fit` for the arguments.
        """
        return await fit(self, input, target, criterion, optim, batch_size, **kwargs)

    # ----------------------------------------------------------------------
    async def summary(self, verbose: bool = True, return_instead_of_print: bool = False) -> Optional[str]:
        """
        Describe the model in a Keras-like table row.

        Parameters
        ----------
        verbose : bool, optional
            Frame the row with the table header and a parameter count footer.
            Defaults to True.
        return_instead_of_print : bool, optional
            Return the text instead of writing it to `sink`. Defaults to False.

        Returns
        -------
        str or None
            The summary if `return_instead_of_print` is set.
        """
        output, n_params = await self._summary()
        if verbose:
            output = SINGLE + HEADER + DOUBLE + output + DOUBLE + _footer(n_params) + SINGLE

        if return_instead_of_print:
            return output
        self.sink(output)
        return None

    # ----------------------------------------------------------------------
    async def _summary(self) -> Tuple[str, int]:
        """
        The summary row of this model and its parameter count.
        """
        await self.wait_ready()
        layer = f"{await self.layer_type()}_{self.id} ({self.category})"
        output_shape = str(self.output_shape)
        n_params = await self.num_parameters()
        return f"{layer:<29}{output_shape:<26}{n_params}\n", n_params


########################################################################
class Sequential(Model):
    """
    A remote ordered container of models.

    No children are kept locally; they are enumerated from the engine on
    demand.

    Parameters
    ----------
    transport : CommandTransport
        The transport of the engine.
    layers : Iterable[Model], optional
        Models appended remotely, in order, right after creation.
    id : Any, optional
        Identity of an existing remote container; `layers` is ignored then.
    """

    kind = 'sequential'

    # ----------------------------------------------------------------------
    def __init__(self, transport: CommandTransport, layers: Optional[Iterable[Model]] = None, id: Any = None) -> None:
        """"""
        self._layers = list(layers or [])
        super().__init__(transport, id=id)

    # ----------------------------------------------------------------------
    async def _create(self, params: List[Any]) -> Any:
        """"""
        identity = await super()._create(params)
        for layer in self._layers:
            command = self.cmd('add', [await layer.wait_ready()])
            command.object_index = identity
            await self.transport.send(command, 'string')
        return identity

    # ----------------------------------------------------------------------
    async def add(self, model: Model) -> None:
        """
        Append a model to the remote container.
        """
        await self.call('add', [model], 'string')

    # ----------------------------------------------------------------------
    async def summary(self, verbose: bool = True, return_instead_of_print: bool = False) -> Optional[str]:
        """
        Summarize every child, in container order, in one table.

        Child summaries are fetched concurrently.
        """
        output, n_params = await self._summary()
        if verbose:
            output += _footer(n_params) + SINGLE

        if return_instead_of_print:
            return output
        self.sink(output)
        return None

    # ----------------------------------------------------------------------
    async def _summary(self) -> Tuple[str, int]:
        """"""
        children = await self.models()
        summaries = await asyncio.gather(*(child._summary() for child in children))
        rows = [row for row, _ in summaries]
        output = SINGLE + HEADER + DOUBLE + SINGLE.join(rows) + DOUBLE
        return output, sum(n_params for _, n_params in summaries)


########################################################################
class Policy(Model):
    """
    A policy for reinforcement learning.

    Parameters
    ----------
    transport : CommandTransport
        The transport of the engine.
    model : Model, optional
        The model producing action scores.
    optimizer : Optimizer, optional
        The optimizer updating `model`. The policy is created remotely from
        both identities when both are given.
    state_type : str, optional
        ``'discrete'`` samples actions, ``'continuous'`` runs the model
        forward. Defaults to ``'discrete'``.
    id : Any, optional
        Identity of an existing remote policy.
    """

    kind = 'policy'

    # ----------------------------------------------------------------------
    def __init__(
        self,
        transport: CommandTransport,
        model: Optional[Model] = None,
        optimizer: Optional[Optimizer] = None,
        state_type: str = 'discrete',
        id: Any = None,
    ) -> None:
        """"""
        self.model = model
        self.optimizer = optimizer
        self.state_type = state_type
        params = [model, optimizer] if (model is not None and optimizer is not None and id is None) else []
        super().__init__(transport, id=id, params=params)

    # ----------------------------------------------------------------------
    async def sample(self, *inputs: Tensor) -> IntTensor:
        """
        Sample discrete actions for the given observations.
        """
        return IntTensor(self.transport, id=await self.call('sample', inputs, 'IntTensor'))

    # ----------------------------------------------------------------------
    async def parameters(self) -> List[FloatTensor]:
        """
        The parameters of the wrapped model; a policy owns none itself.
        """
        await self.wait_ready()
        if self.model is not None:
            return await self.model.parameters()
        return []

    # ----------------------------------------------------------------------
    async def feed(self, *inputs: Tensor) -> Tensor:
        """
        Produce actions according to `state_type`.

        Raises
        ------
        UnknownStateType
            If `state_type` is neither ``'discrete'`` nor ``'continuous'``.
        """
        match self.state_type:
            case 'discrete':
                return await self.sample(*inputs)
            case 'continuous':
                return await self.forward(*inputs)
        raise UnknownStateType(self.state_type)


# ----------------------------------------------------------------------
def linear(transport: CommandTransport, input_dim: int = 0, output_dim: int = 0, initializer: str = 'Xavier', id: Any = None) -> Model:
    """Fully connected layer."""
    return Model(transport, 'linear', id=id, params=[input_dim, output_dim, initializer])


# ----------------------------------------------------------------------
def dropout(transport: CommandTransport, rate: float = 0.5, id: Any = None) -> Model:
    """"""
    return Model(transport, 'dropout', id=id, params=[rate])


# ----------------------------------------------------------------------
def softmax(transport: CommandTransport, dim: int = 1, id: Any = None) -> Model:
    """"""
    return Model(transport, 'softmax', id=id, params=[dim])


# ----------------------------------------------------------------------
def log_softmax(transport: CommandTransport, dim: int = 1, id: Any = None) -> Model:
    """"""
    return Model(transport, 'logsoftmax', id=id, params=[dim])


# ----------------------------------------------------------------------
def cross_entropy_loss(transport: CommandTransport, dim: int = 1, id: Any = None) -> Model:
    """Cross entropy loss; call `forward(prediction, target)`."""
    return Model(transport, 'crossentropyloss', id=id, params=[dim])


# ----------------------------------------------------------------------
def relu(transport: CommandTransport, id: Any = None) -> Model:
    """"""
    return Model(transport, 'relu', id=id)


# ----------------------------------------------------------------------
def sigmoid(transport: CommandTransport, id: Any = None) -> Model:
    """"""
    return Model(transport, 'sigmoid', id=id)


# ----------------------------------------------------------------------
def tanh(transport: CommandTransport, id: Any = None) -> Model:
    """"""
    return Model(transport, 'tanh', id=id)


# ----------------------------------------------------------------------
def log(transport: CommandTransport, id: Any = None) -> Model:
    """Elementwise natural logarithm."""
    return Model(transport, 'log', id=id)


# ----------------------------------------------------------------------
def mse_loss(transport: CommandTransport, id: Any = None) -> Model:
    """Mean squared error loss; call `forward(prediction, target)`."""
    return Model(transport, 'mseloss', id=id)


# ----------------------------------------------------------------------
def nll_loss(transport: CommandTransport, id: Any = None) -> Model:
    """Negative log likelihood loss; call `forward(prediction, target)`."""
    return Model(transport, 'nllloss', id=id)


# Every kind the engine may report, and how to wrap an identity of that kind.
KINDS: Dict[str, Callable[[CommandTransport, Any], Model]] = {
    'linear': lambda transport, id_: linear(transport, id=id_),
    'sigmoid': lambda transport, id_: sigmoid(transport, id=id_),
    'crossentropyloss': lambda transport, id_: cross_entropy_loss(transport, id=id_),
    'tanh': lambda transport, id_: tanh(transport, id=id_),
    'dropout': lambda transport, id_: dropout(transport, id=id_),
    'softmax': lambda transport, id_: softmax(transport, id=id_),
    'logsoftmax': lambda transport, id_: log_softmax(transport, id=id_),
    'relu': lambda transport, id_: relu(transport, id=id_),
    'log': lambda transport, id_: log(transport, id=id_),
    'mseloss': lambda transport, id_: mse_loss(transport, id=id_),
    'nllloss': lambda transport, id_: nll_loss(transport, id=id_),
    'sequential': lambda transport, id_: Sequential(transport, id=id_),
    'policy': lambda transport, id_: Policy(transport, id=id_),
}


# ----------------------------------------------------------------------
async def resolve(transport: CommandTransport, id: Any) -> Model:
    """
    Build the concrete proxy for a remote identity.

    Parameters
    ----------
    transport : CommandTransport
        The transport of the engine holding the object.
    id : Any
        The remote identity.

    Returns
    -------
    Model
        A ready proxy whose kind is the one reported by the engine.

    Raises
    ------
    UnsupportedKind
        If the reported kind is not in `KINDS`.
    """
    kind = await Model(transport, id=id).layer_type()
    try:
        factory = KINDS[kind]
    except KeyError:
        raise UnsupportedKind(kind) from None
    logger_model.debug(f"Resolved {id!r} as '{kind}'.")
    return factory(transport, id)

