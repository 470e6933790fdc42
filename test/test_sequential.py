"""
=======================================
TestSequential: Remote model containers
=======================================

Classes
-------
TestSequential : unittest.IsolatedAsyncioTestCase
    Appending children and summarizing them in container order.
"""

import unittest

from remodel.model import Sequential, linear, relu, softmax
from utils import FakeEngine, loopback


########################################################################
class TestSequential(unittest.IsolatedAsyncioTestCase):
    """"""

    # ----------------------------------------------------------------------
    def setUp(self):
        """"""
        self.engine = FakeEngine()
        self.transport = loopback(self.engine)

    # ----------------------------------------------------------------------
    async def test_layers_added_after_creation(self):
        """
        Layers given at construction are appended remotely, in order, before the container is ready.
        """
        l1 = linear(self.transport, 4, 8)
        l2 = relu(self.transport)
        model = Sequential(self.transport, [l1, l2])

        await model.wait_ready()

        adds = self.engine.calls_to('add')
        self.assertEqual([call['tensorIndexParams'] for call in adds], [[l1.id], [l2.id]])
        self.assertTrue(all(call['objectIndex'] == model.id for call in adds))
        self.assertEqual(self.engine.objects[model.id]['children'], [l1.id, l2.id])
        creates = [call['objectType'] for call in self.engine.calls_to('create')]
        self.assertEqual(creates.count('sequential'), 1)

    # ----------------------------------------------------------------------
    async def test_add(self):
        """"""
        model = Sequential(self.transport)
        layer = softmax(self.transport, id=self.engine.new('softmax'))

        await model.add(layer)

        self.assertEqual(self.engine.objects[model.id]['children'], [layer.id])
        self.assertEqual(await model.length(), 1)

    # ----------------------------------------------------------------------
    async def test_summary_keeps_container_order(self):
        """
        Child rows follow the container order even when earlier children answer last.
        """
        children = [linear(self.transport, 2, 3), relu(self.transport), linear(self.transport, 3, 1)]
        model = Sequential(self.transport, children)
        await model.wait_ready()
        ids = [child.id for child in children]

        # Earlier children are slower, so completion order is reversed.
        slow = {id_: 0.03 * (len(ids) - i) for i, id_ in enumerate(ids)}
        self.transport.latency = lambda envelope: slow.get(envelope['objectIndex'], 0)

        output = await model.summary(verbose=False, return_instead_of_print=True)

        positions = [output.index(f"_{id_} (model)") for id_ in ids]
        self.assertEqual(positions, sorted(positions))
        self.assertTrue(output.startswith('_' * 65 + '\nLayer (type)'))
        self.assertTrue(output.endswith('=' * 65 + '\n'))
        self.assertNotIn('Total params', output)

    # ----------------------------------------------------------------------
    async def test_summary_empty(self):
        """"""
        model = Sequential(self.transport)
        output = await model.summary(verbose=False, return_instead_of_print=True)
        self.assertEqual(output.count('\n'), 4)

    # ----------------------------------------------------------------------
    async def test_summary_verbose_to_sink(self):
        """"""
        lines = []
        model = Sequential(self.transport, [linear(self.transport, 2, 3), linear(self.transport, 3, 1)])
        model.sink = lines.append

        self.assertIsNone(await model.summary())
        self.assertEqual(len(lines), 1)
        self.assertIn('Total params: 13', lines[0])

    # ----------------------------------------------------------------------
    async def test_summary_counts_each_child_once(self):
        """
        The footer totals come from the rows, without asking for the counts again.
        """
        model = Sequential(self.transport, [linear(self.transport, 2, 3), relu(self.transport), linear(self.transport, 3, 1)])

        output = await model.summary(return_instead_of_print=True)

        self.assertIn('Total params: 13', output)
        self.assertEqual(len(self.engine.calls_to('param_count')), 3)

    # ----------------------------------------------------------------------
    async def test_nested_summary(self):
        """"""
        inner = Sequential(self.transport, [relu(self.transport)])
        outer = Sequential(self.transport, [linear(self.transport, 1, 1), inner])

        output = await outer.summary(verbose=False, return_instead_of_print=True)

        self.assertEqual(output.count('Layer (type)'), 2)
        self.assertLess(output.index('linear_'), output.index('relu_'))


if __name__ == '__main__':
    unittest.main()
