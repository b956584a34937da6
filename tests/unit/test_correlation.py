"""
Unit tests for cycle ID propagation.
"""
import logging
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor

from keyvault_exporter.common.correlation import (
    CycleContext,
    CycleFilter,
    generate_cycle_id,
    get_component,
    get_cycle_id,
    run_in_context,
    set_component,
    set_cycle_id,
)


class TestCycleId(unittest.TestCase):

    def tearDown(self):
        set_cycle_id(None)

    def test_generate_is_short_hex(self):
        cycle_id = generate_cycle_id()
        self.assertEqual(len(cycle_id), 12)
        int(cycle_id, 16)

    def test_generate_is_unique(self):
        ids = {generate_cycle_id() for _ in range(100)}
        self.assertEqual(len(ids), 100)

    def test_set_and_get(self):
        set_cycle_id("abc")
        self.assertEqual(get_cycle_id(), "abc")

    def test_default_is_none(self):
        self.assertIsNone(get_cycle_id())


class TestCycleContext(unittest.TestCase):

    def test_scopes_cycle_id(self):
        with CycleContext("outer") as ctx:
            self.assertEqual(ctx.cycle_id, "outer")
            self.assertEqual(get_cycle_id(), "outer")
        self.assertIsNone(get_cycle_id())

    def test_nested_restores_previous(self):
        with CycleContext("outer"):
            with CycleContext("inner"):
                self.assertEqual(get_cycle_id(), "inner")
            self.assertEqual(get_cycle_id(), "outer")

    def test_generates_id_when_not_given(self):
        with CycleContext() as ctx:
            self.assertEqual(len(ctx.cycle_id), 12)


class TestRunInContext(unittest.TestCase):

    def test_plain_executor_loses_context(self):
        with CycleContext("cycle-x"):
            with ThreadPoolExecutor(max_workers=1) as pool:
                seen = pool.submit(get_cycle_id).result()
        self.assertIsNone(seen)

    def test_wrapped_function_sees_cycle_id(self):
        with CycleContext("cycle-x"):
            with ThreadPoolExecutor(max_workers=1) as pool:
                seen = pool.submit(run_in_context(get_cycle_id)).result()
        self.assertEqual(seen, "cycle-x")

    def test_passes_arguments(self):
        wrapped = run_in_context(lambda a, b=0: a + b)
        self.assertEqual(wrapped(1, b=2), 3)


class TestCycleFilter(unittest.TestCase):

    def _record(self):
        return logging.LogRecord("t", logging.INFO, "", 1, "m", (), None)

    def test_injects_fields(self):
        def inside_thread():
            set_component("collector")
            with CycleContext("c1"):
                record = self._record()
                CycleFilter().filter(record)
                results.append((record.cycle_id, record.component))

        results = []
        thread = threading.Thread(target=inside_thread)
        thread.start()
        thread.join()

        self.assertEqual(results, [("c1", "collector")])

    def test_empty_outside_cycle(self):
        record = self._record()
        self.assertTrue(CycleFilter().filter(record))
        self.assertEqual(record.cycle_id, "")

    def test_component_is_thread_local(self):
        thread = threading.Thread(target=set_component, args=("scheduler",))
        thread.start()
        thread.join()
        self.assertNotEqual(get_component(), "scheduler")


if __name__ == "__main__":
    unittest.main()
