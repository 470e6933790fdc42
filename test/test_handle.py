"""
====================================
TestHandle: DeferredHandle lifecycle
====================================

Unit tests for the two-phase lifecycle shared by every proxy: ready at once
with a known identity, otherwise created exactly once, with failures
recorded and re-raised.

Classes
-------
TestHandle : unittest.IsolatedAsyncioTestCase
    Lifecycle transitions inside a running event loop.
TestHandleWithoutLoop : unittest.TestCase
    Construction outside of any event loop.
"""

import asyncio
import unittest

from remodel.handle import DeferredHandle, HandleState


########################################################################
class TestHandle(unittest.IsolatedAsyncioTestCase):
    """"""

    # ----------------------------------------------------------------------
    async def test_known_identity_is_ready(self):
        """
        A handle built with an identity is ready synchronously and never creates.
        """
        created = []

        async def create():
            created.append(True)
            return 'never'

        handle = DeferredHandle(identity='obj7', create=create)
        handle.start_soon()

        self.assertIs(handle.state, HandleState.READY)
        self.assertTrue(handle.ready())
        self.assertEqual(await handle.wait_ready(), 'obj7')
        self.assertEqual(created, [])

    # ----------------------------------------------------------------------
    async def test_single_creation_for_many_waiters(self):
        """
        Concurrent waiters share one creation and resume in the order they waited.
        """
        calls = []
        resumed = []

        async def create():
            calls.append(True)
            await asyncio.sleep(0.01)
            return 'obj1'

        handle = DeferredHandle(create=create, name='linear')
        self.assertIs(handle.state, HandleState.UNCOMMITTED)
        handle.start_soon()
        self.assertIs(handle.state, HandleState.RESOLVING)

        async def waiter(n):
            identity = await handle.wait_ready()
            resumed.append(n)
            return identity

        results = await asyncio.gather(*(waiter(n) for n in range(5)))

        self.assertEqual(results, ['obj1'] * 5)
        self.assertEqual(resumed, [0, 1, 2, 3, 4])
        self.assertEqual(len(calls), 1)
        self.assertIs(handle.state, HandleState.READY)

    # ----------------------------------------------------------------------
    async def test_lazy_start_on_first_wait(self):
        """"""
        async def create():
            return 'obj3'

        handle = DeferredHandle(create=create)
        self.assertIs(handle.state, HandleState.UNCOMMITTED)
        self.assertEqual(await handle.wait_ready(), 'obj3')
        self.assertFalse(handle.start())

    # ----------------------------------------------------------------------
    async def test_failure_is_recorded_and_reraised(self):
        """
        A failed creation re-raises the same error on every wait without retrying.
        """
        calls = []
        error = ConnectionError('engine down')

        async def create():
            calls.append(True)
            raise error

        handle = DeferredHandle(create=create)
        handle.start_soon()

        for _ in range(3):
            with self.assertRaises(ConnectionError) as ctx:
                await handle.wait_ready()
            self.assertIs(ctx.exception, error)

        self.assertIs(handle.state, HandleState.FAILED)
        self.assertIs(handle.error, error)
        self.assertEqual(len(calls), 1)
        self.assertIsNone(handle.identity)

    # ----------------------------------------------------------------------
    async def test_cancelled_waiter_does_not_cancel_creation(self):
        """"""
        async def create():
            await asyncio.sleep(0.05)
            return 'obj9'

        handle = DeferredHandle(create=create)
        handle.start_soon()

        waiter = asyncio.create_task(handle.wait_ready())
        await asyncio.sleep(0)
        waiter.cancel()

        self.assertEqual(await handle.wait_ready(), 'obj9')

    # ----------------------------------------------------------------------
    async def test_rebind(self):
        """"""
        handle = DeferredHandle(identity='obj1')
        handle.rebind('obj2')
        self.assertEqual(handle.identity, 'obj2')
        self.assertIs(handle.state, HandleState.READY)

    # ----------------------------------------------------------------------
    async def test_rebind_requires_ready(self):
        """"""
        async def create():
            await asyncio.sleep(0.01)
            return 'obj1'

        handle = DeferredHandle(create=create)
        with self.assertRaises(RuntimeError):
            handle.rebind('obj2')


########################################################################
class TestHandleWithoutLoop(unittest.TestCase):
    """"""

    # ----------------------------------------------------------------------
    def test_stays_uncommitted_outside_loop(self):
        """"""
        async def create():
            return 'obj1'

        handle = DeferredHandle(create=create)
        handle.start_soon()
        self.assertIs(handle.state, HandleState.UNCOMMITTED)

    # ----------------------------------------------------------------------
    def test_needs_identity_or_creation(self):
        """"""
        with self.assertRaises(ValueError):
            DeferredHandle()


if __name__ == '__main__':
    unittest.main()
