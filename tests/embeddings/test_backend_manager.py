"""
Test suite for BackendManager.

Tests lazy loading, leases, auto-unloading and load failures.
"""

import threading
import time
import unittest
from unittest.mock import MagicMock

from ragstore.embeddings.backend_manager import BackendManager
from ragstore.utils.exceptions import EmbeddingError, ModelLoadError


class TestBackendManager(unittest.TestCase):
    """Test cases for BackendManager."""

    def setUp(self):
        self.factory = MagicMock(side_effect=lambda: MagicMock(name="backend"))
        self.manager = BackendManager(factory=self.factory, idle_timeout=0)

    def tearDown(self):
        self.manager.unload()

    def test_lazy_loading_on_first_access(self):
        self.assertFalse(self.manager.is_loaded())
        self.assertIsNone(self.manager.current())
        self.factory.assert_not_called()

        backend = self.manager.get_backend()

        self.assertTrue(self.manager.is_loaded())
        self.assertIs(self.manager.current(), backend)
        self.factory.assert_called_once()

    def test_ensure_loaded_reports_creation(self):
        backend, created = self.manager.ensure_loaded()
        self.assertTrue(created)
        again, created_again = self.manager.ensure_loaded()
        self.assertIs(again, backend)
        self.assertFalse(created_again)
        self.assertEqual(self.factory.call_count, 1)

    def test_unload_closes_backend(self):
        backend = self.manager.get_backend()
        self.manager.unload()

        self.assertFalse(self.manager.is_loaded())
        backend.close.assert_called_once()

        self.manager.get_backend()
        self.assertEqual(self.manager.get_stats()["load_count"], 2)

    def test_session_unloads_backend_it_loaded(self):
        with self.manager.session() as (backend, created):
            self.assertTrue(created)
            self.assertEqual(self.manager.get_stats()["active_leases"], 1)
        self.assertFalse(self.manager.is_loaded())
        self.assertEqual(self.manager.get_stats()["active_leases"], 0)
        backend.close.assert_called_once()

    def test_session_keeps_preloaded_backend(self):
        preloaded, _ = self.manager.ensure_loaded()
        with self.manager.session() as (backend, created):
            self.assertIs(backend, preloaded)
            self.assertFalse(created)
        self.assertTrue(self.manager.is_loaded())
        preloaded.close.assert_not_called()

    def test_nested_session_defers_unload_to_outer(self):
        with self.manager.session() as (outer, outer_created):
            with self.manager.session() as (inner, inner_created):
                self.assertIs(inner, outer)
                self.assertFalse(inner_created)
                self.assertEqual(self.manager.get_stats()["active_leases"], 2)
            self.assertTrue(self.manager.is_loaded())
        self.assertFalse(self.manager.is_loaded())
        self.assertEqual(self.factory.call_count, 1)

    def test_session_leaves_backend_for_overlapping_lease(self):
        """A lease taken while the loading session runs keeps the backend after that session ends."""
        lease_taken = threading.Event()
        session_done = threading.Event()
        seen = {}

        def lease_holder():
            with self.manager.lease() as backend:
                seen["backend"] = backend
                lease_taken.set()
                session_done.wait(5)
                seen["loaded_after_session"] = self.manager.is_loaded()

        with self.manager.session() as (backend, created):
            self.assertTrue(created)
            worker = threading.Thread(target=lease_holder)
            worker.start()
            self.assertTrue(lease_taken.wait(5))
        session_done.set()
        worker.join(5)

        self.assertIs(seen["backend"], backend)
        self.assertTrue(seen["loaded_after_session"])
        self.assertEqual(self.factory.call_count, 1)
        backend.close.assert_not_called()

    def test_session_releases_lease_on_error(self):
        with self.assertRaises(RuntimeError):
            with self.manager.session():
                raise RuntimeError("boom")
        self.assertEqual(self.manager.get_stats()["active_leases"], 0)
        self.assertFalse(self.manager.is_loaded())

    def test_factory_failure_raises_model_load_error(self):
        manager = BackendManager(factory=MagicMock(side_effect=OSError("weights missing")), idle_timeout=0)
        with self.assertRaises(ModelLoadError) as ctx:
            manager.get_backend()
        self.assertIn("weights missing", str(ctx.exception))
        self.assertFalse(manager.is_loaded())

    def test_ragstore_errors_pass_through(self):
        manager = BackendManager(factory=MagicMock(side_effect=EmbeddingError("bad")), idle_timeout=0)
        with self.assertRaises(EmbeddingError):
            manager.get_backend()

    def test_auto_unload_after_timeout(self):
        manager = BackendManager(factory=self.factory, idle_timeout=0.2)
        try:
            manager.get_backend()
            self.assertTrue(manager.is_loaded())
            time.sleep(0.6)
            self.assertFalse(manager.is_loaded())
        finally:
            manager.unload()

    def test_lease_blocks_auto_unload(self):
        manager = BackendManager(factory=self.factory, idle_timeout=0.2)
        try:
            with manager.lease():
                time.sleep(0.6)
                self.assertTrue(manager.is_loaded())
        finally:
            manager.unload()

    def test_concurrent_access_loads_once(self):
        results = []

        def worker():
            results.append(self.manager.get_backend())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(self.factory.call_count, 1)
        self.assertTrue(all(b is results[0] for b in results))

    def test_stats(self):
        stats = self.manager.get_stats()
        self.assertFalse(stats["loaded"])
        self.assertEqual(stats["load_count"], 0)
        self.assertEqual(stats["time_since_last_access"], 0)

        self.manager.get_backend()
        stats = self.manager.get_stats()
        self.assertTrue(stats["loaded"])
        self.assertEqual(stats["idle_timeout"], 0)


if __name__ == "__main__":
    unittest.main()
