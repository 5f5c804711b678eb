import unittest

from lumeo.common.models.jobs import JobStatus, RemoteJobState
from lumeo.common.storage.client import MemoryPersistence
from lumeo.engine.progress import highest_percentage, merge_progress
from lumeo.engine.store.history import PayloadHistory
from lumeo.engine.store.jobs import JobStore


def state(status="processing", job_id="p1", **kwargs):
    return RemoteJobState(id=job_id, status=status, **kwargs)


class TestProgress(unittest.TestCase):
    def test_highest_percentage(self):
        logs = "loading 12%\nsampling 45%\nbogus 150%\n"
        self.assertEqual(highest_percentage(logs), 45.0)
        self.assertIsNone(highest_percentage("no numbers here"))
        self.assertIsNone(highest_percentage(None))

    def test_merge_progress(self):
        self.assertEqual(merge_progress(None, 12.0, None), 12.0)
        self.assertEqual(merge_progress(45.0, 30.0), 45.0)
        self.assertIsNone(merge_progress(None, None))


class TestJobStore(unittest.TestCase):
    def setUp(self):
        self.store = JobStore()

    def test_progress_never_decreases(self):
        seen = []
        for pct in [12, 45, 30, 80]:
            seen.append(self.store.upsert(state(logs=f"step {pct}%")).progress_percent)
        self.assertEqual(seen, [12.0, 45.0, 45.0, 80.0])

    def test_upsert_replaces_whole_state(self):
        self.store.upsert(state(logs="a", poll_uri="https://x/1"))
        self.store.upsert(state(status="succeeded", outputs=["o.png"]))
        stored = self.store.get("p1")
        self.assertEqual(stored.status, JobStatus.SUCCEEDED)
        self.assertEqual(stored.outputs, ["o.png"])
        self.assertIsNone(stored.logs)
        self.assertEqual(stored.poll_uri, "")

    def test_terminal_state_never_transitions_out(self):
        self.store.upsert(state(status="succeeded", outputs=["o.png"]))
        returned = self.store.upsert(state(status="processing"))
        self.assertEqual(returned.status, JobStatus.SUCCEEDED)
        self.assertEqual(self.store.get("p1").status, JobStatus.SUCCEEDED)
        self.assertEqual(self.store.active(), [])

    def test_history_deduplicates_by_id(self):
        self.assertTrue(self.store.append_to_history(state()))
        self.assertFalse(self.store.append_to_history(state(status="succeeded")))
        self.assertEqual(len(self.store.history()), 1)

        self.assertTrue(self.store.update_history(state(status="succeeded")))
        self.assertEqual(self.store.history()[0].status, JobStatus.SUCCEEDED)
        self.assertFalse(self.store.update_history(state(job_id="unknown")))

    def test_upsert_refreshes_history_entry(self):
        self.store.append_to_history(self.store.upsert(state(status="starting")))
        self.store.upsert(state(status="succeeded", outputs=["o.png"]))
        self.assertEqual(self.store.history()[0].status, JobStatus.SUCCEEDED)
        self.assertEqual(self.store.history()[0].outputs, ["o.png"])

        # Jobs not yet in history are not added by an upsert
        self.store.upsert(state(job_id="other"))
        self.assertEqual([s.id for s in self.store.history()], ["p1"])

    def test_clear_finished_keeps_in_flight(self):
        self.store.append_to_history(state(job_id="done", status="succeeded"))
        self.store.append_to_history(state(job_id="running"))
        self.assertEqual(self.store.clear_history(finished_only=True), 1)
        self.assertEqual([s.id for s in self.store.history()], ["running"])
        self.assertEqual(self.store.clear_history(), 1)
        self.assertEqual(self.store.history(), [])

    def test_remove(self):
        self.store.upsert(state())
        self.store.append_to_history(state())
        self.assertTrue(self.store.remove("p1"))
        self.assertIsNone(self.store.get("p1"))
        self.assertEqual(self.store.history(), [])
        self.assertFalse(self.store.remove("p1"))

    def test_snapshot_and_restore(self):
        persistence = MemoryPersistence()
        self.store.append_to_history(state(job_id="a", status="succeeded", outputs=["a.png"]))
        self.store.append_to_history(state(job_id="b"))
        self.assertEqual(self.store.snapshot(persistence, "responses"), 2)

        restored = JobStore()
        self.assertEqual(restored.restore(persistence, "responses"), 2)
        self.assertEqual([s.id for s in restored.history()], ["a", "b"])
        self.assertEqual(restored.get("a").outputs, ["a.png"])
        # Restoring twice adds nothing
        self.assertEqual(restored.restore(persistence, "responses"), 0)

    def test_restore_skips_unreadable_entries(self):
        persistence = MemoryPersistence()
        persistence.save("responses", ["not json", state(job_id="ok").model_dump_json()])
        self.assertEqual(self.store.restore(persistence, "responses"), 1)
        self.assertEqual(self.store.all_ids(), {"ok"})


class TestPayloadHistory(unittest.TestCase):
    def test_save_and_load(self):
        persistence = MemoryPersistence()
        payloads = PayloadHistory()
        payloads.append('{"a": 1}')
        payloads.append('{"b": 2}')
        payloads.save(persistence, "payloads")

        loaded = PayloadHistory()
        self.assertEqual(loaded.load(persistence, "payloads"), 2)
        self.assertEqual(loaded.entries(), ['{"a": 1}', '{"b": 2}'])
        loaded.clear()
        self.assertEqual(len(loaded), 0)

if __name__ == '__main__':
    unittest.main()
