"""
=======
Tensors
=======

Remote tensors are opaque for this package: a tensor proxy is created from
raw numeric data and afterwards only its identity travels as a command
parameter. The data is normalized with numpy before it is sent.
"""

from typing import Any, List, Optional

import numpy as np

from remodel.proxy import RemoteObject
from remodel.transport import CommandTransport


########################################################################
class Tensor(RemoteObject):
    """
    A remote tensor.

    Parameters
    ----------
    transport : CommandTransport
        The transport of the engine holding the tensor.
    data : array_like, optional
        Raw numeric data. Converted with `numpy.asarray` to `dtype` and sent
        as its flattened values and its shape.
    id : Any, optional
        Identity of an existing remote tensor; `data` is ignored when given.
    """

    kind = 'FloatTensor'
    dtype = np.float32

    # ----------------------------------------------------------------------
    def __init__(self, transport: CommandTransport, data: Any = None, id: Any = None) -> None:
        """"""
        params = []
        if id is None:
            if data is None:
                raise ValueError("A tensor needs either data or a remote identity.")
            array = np.asarray(data, dtype=self.dtype)
            params = [array.ravel().tolist(), list(array.shape)]
        super().__init__(transport, id=id, params=params)

    # ----------------------------------------------------------------------
    async def shape(self) -> List[int]:
        """
        Fetch the shape of the remote tensor.
        """
        return [int(dim) for dim in await self.call('shape', expected_type='float_list')]

    # ----------------------------------------------------------------------
    async def get(self) -> np.ndarray:
        """
        Fetch the values of the remote tensor as a numpy array.
        """
        values = await self.call('get', expected_type='float_list')
        return np.asarray(values, dtype=self.dtype).reshape(await self.shape())


########################################################################
class FloatTensor(Tensor):
    kind = 'FloatTensor'
    dtype = np.float32


########################################################################
class IntTensor(Tensor):
    kind = 'IntTensor'
    dtype = np.int64


# ----------------------------------------------------------------------
def as_tensor(transport: CommandTransport, value: Any, tensor_class: Optional[type] = None) -> Tensor:
    """
    Return `value` if it is already a tensor, otherwise wrap its raw data.
    """
    if isinstance(value, Tensor):
        return value
    return (tensor_class or FloatTensor)(transport, value)
