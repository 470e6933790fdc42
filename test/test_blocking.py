"""
======================================
TestBlocking: Synchronous proxy facade
======================================

Classes
-------
TestBlocking : unittest.TestCase
    Driving proxies from plain synchronous code.
"""

import asyncio
import unittest

from remodel.blocking import BlockingProxy
from remodel.handle import HandleState
from remodel.model import Sequential, linear, relu
from remodel.tensor import FloatTensor
from utils import FakeEngine, loopback


########################################################################
class TestBlocking(unittest.TestCase):
    """"""

    # ----------------------------------------------------------------------
    def setUp(self):
        """"""
        self.loop = asyncio.new_event_loop()
        self.engine = FakeEngine()
        self.transport = loopback(self.engine)

    # ----------------------------------------------------------------------
    def tearDown(self):
        """"""
        self.loop.close()
        asyncio.set_event_loop(None)

    # ----------------------------------------------------------------------
    def test_creation_happens_on_first_call(self):
        """"""
        model = BlockingProxy(linear(self.transport, 3, 4), self.loop)

        self.assertIs(model.handle.state, HandleState.UNCOMMITTED)
        self.assertEqual(model.num_parameters(), 16)
        self.assertIs(model.handle.state, HandleState.READY)
        self.assertEqual(len(self.engine.calls_to('create')), 1)

    # ----------------------------------------------------------------------
    def test_results_are_wrapped(self):
        """"""
        model = BlockingProxy(linear(self.transport, 3, 4), self.loop)

        params = model.parameters()
        output = model.forward(FloatTensor(self.transport, id='x'))

        self.assertEqual(len(params), 2)
        self.assertTrue(all(isinstance(p, BlockingProxy) for p in params))
        self.assertIsInstance(output, BlockingProxy)
        self.assertIsInstance(output.unwrap(), FloatTensor)

    # ----------------------------------------------------------------------
    def test_wrapped_arguments(self):
        """"""
        container = BlockingProxy(Sequential(self.transport), self.loop)
        layer = BlockingProxy(relu(self.transport), self.loop)

        container.add(layer)

        self.assertEqual(container.length(), 1)
        self.assertEqual(self.engine.objects[container.id]['children'], [layer.id])

    # ----------------------------------------------------------------------
    def test_attribute_passthrough(self):
        """"""
        lines = []
        model = BlockingProxy(linear(self.transport, 1, 1), self.loop)
        model.sink = lines.append

        self.assertEqual(model.kind, 'linear')
        model.summary(verbose=False)
        self.assertEqual(len(lines), 1)


if __name__ == '__main__':
    unittest.main()
