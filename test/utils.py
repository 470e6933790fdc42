"""
A small in-memory engine answering command envelopes, used as test double.
"""

from typing import Any, Dict, List, Optional

from remodel.transport import LoopbackTransport


########################################################################
class FakeEngine:
    """
    Keeps every remote object in a dictionary and records every envelope.

    Each ``functionCall`` is handled by the ``_process_<functionCall>`` method.
    Calls listed in `fail` raise instead.
    """

    # ----------------------------------------------------------------------
    def __init__(self, num_batches: int = 0, losses: Optional[List[Any]] = None) -> None:
        """"""
        self.calls: List[Dict[str, Any]] = []
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.num_batches = num_batches
        self.losses = list(losses or [])
        self.fail = set()
        self.counter = 0

    # ----------------------------------------------------------------------
    def __call__(self, envelope: Dict[str, Any]) -> Any:
        """"""
        self.calls.append(envelope)
        function_call = envelope['functionCall']
        if function_call in self.fail:
            raise RuntimeError(f"engine failure on '{function_call}'")

        processor = getattr(self, f"_process_{function_call}", None)
        if processor is None:
            raise RuntimeError(f"No processor available for '{function_call}'")
        return processor(envelope)

    # ----------------------------------------------------------------------
    def new(self, kind: str, params: Optional[List[Any]] = None, param_count: int = 0) -> str:
        """Store a new object and return its identity."""
        self.counter += 1
        id_ = f"obj{self.counter}"
        self.objects[id_] = {
            'kind': kind,
            'params': list(params or []),
            'children': [],
            'parameters': [],
            'param_count': param_count,
        }
        return id_

    # ----------------------------------------------------------------------
    def calls_to(self, function_call: str) -> List[Dict[str, Any]]:
        """"""
        return [call for call in self.calls if call['functionCall'] == function_call]

    # ----------------------------------------------------------------------
    def _process_create(self, envelope):
        kind = envelope['objectType']
        params = envelope['tensorIndexParams']
        param_count = 0
        if kind == 'linear':
            param_count = params[0] * params[1] + params[1]
        id_ = self.new(kind, params, param_count)
        if kind == 'linear':
            self.objects[id_]['parameters'] = [self.new('FloatTensor'), self.new('FloatTensor')]
        return id_

    # ----------------------------------------------------------------------
    def _process_model_type(self, envelope):
        return self.objects[envelope['objectIndex']]['kind']

    # ----------------------------------------------------------------------
    def _process_params(self, envelope):
        return list(self.objects[envelope['objectIndex']]['parameters'])

    # ----------------------------------------------------------------------
    def _process_param_count(self, envelope):
        return self.objects[envelope['objectIndex']]['param_count']

    # ----------------------------------------------------------------------
    def _process_forward(self, envelope):
        return self.new('FloatTensor', envelope['tensorIndexParams'])

    # ----------------------------------------------------------------------
    def _process_sample(self, envelope):
        return self.new('IntTensor', envelope['tensorIndexParams'])

    # ----------------------------------------------------------------------
    def _process_activation(self, envelope):
        return self.new('FloatTensor')

    # ----------------------------------------------------------------------
    def _process_models(self, envelope):
        return list(self.objects[envelope['objectIndex']]['children'])

    # ----------------------------------------------------------------------
    def _process_add(self, envelope):
        self.objects[envelope['objectIndex']]['children'].append(envelope['tensorIndexParams'][0])
        return envelope['objectIndex']

    # ----------------------------------------------------------------------
    def _process_set_id(self, envelope):
        return envelope['tensorIndexParams'][0]

    # ----------------------------------------------------------------------
    def _process_shape(self, envelope):
        return self.objects[envelope['objectIndex']]['params'][1]

    # ----------------------------------------------------------------------
    def _process_get(self, envelope):
        return self.objects[envelope['objectIndex']]['params'][0]

    # ----------------------------------------------------------------------
    def _process_zero_grad(self, envelope):
        return ''

    # ----------------------------------------------------------------------
    def _process_step(self, envelope):
        return ''

    # ----------------------------------------------------------------------
    def _process_prepare_to_fit(self, envelope):
        return self.num_batches

    # ----------------------------------------------------------------------
    def _process_fit(self, envelope):
        if self.losses:
            return self.losses.pop(0)
        return None


# ----------------------------------------------------------------------
def loopback(engine: FakeEngine, latency: Any = 0) -> LoopbackTransport:
    """
    Create a transport talking to `engine` in process.
    """
    return LoopbackTransport(engine, latency=latency, name='Loopback')
