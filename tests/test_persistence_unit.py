import json
import os
import tempfile
import unittest
from unittest.mock import MagicMock

from minio.error import S3Error

from lumeo.common.storage.client import MemoryPersistence, MinioPersistence, create_persistence
from lumeo.common.storage.database import SQLitePersistence


class FakeS3Error(S3Error):
    # Skips S3Error.__init__, whose signature differs across minio releases
    def __init__(self, code):
        Exception.__init__(self, code)
        self._fake_code = code

    @property
    def code(self):
        return self._fake_code

    def __str__(self):
        return f"S3 operation failed; code: {self._fake_code}"


class TestMemoryPersistence(unittest.TestCase):
    def test_keys_are_independent(self):
        p = MemoryPersistence()
        p.save("lumeo_payloads", ["a"])
        p.save("lumeo_responses", ["b", "c"])
        self.assertEqual(p.load("lumeo_payloads"), ["a"])
        self.assertEqual(p.load("lumeo_responses"), ["b", "c"])
        self.assertEqual(p.load("unknown"), [])


class TestSQLitePersistence(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmp.name, "lumeo.db")

    def tearDown(self):
        self.tmp.cleanup()

    def test_save_overwrites_and_survives_reopen(self):
        p = SQLitePersistence(self.db_path)
        p.save("lumeo_responses", ['{"id": "1"}'])
        p.save("lumeo_responses", ['{"id": "1"}', '{"id": "2"}'])

        reopened = SQLitePersistence(self.db_path)
        self.assertEqual(reopened.load("lumeo_responses"), ['{"id": "1"}', '{"id": "2"}'])
        self.assertEqual(reopened.load("lumeo_payloads"), [])


class TestMinioPersistence(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.client.bucket_exists.return_value = False

    def test_creates_bucket(self):
        MinioPersistence(bucket_name="history", client=self.client)
        self.client.make_bucket.assert_called_once_with("history")

    def test_save_writes_json_object(self):
        p = MinioPersistence(bucket_name="history", client=self.client)
        p.save("lumeo_payloads", ['{"a": 1}'])

        args, kwargs = self.client.put_object.call_args
        self.assertEqual(args[0], "history")
        self.assertEqual(args[1], "lumeo_payloads.json")
        self.assertEqual(json.loads(args[2].getvalue()), ['{"a": 1}'])
        self.assertEqual(kwargs["content_type"], "application/json")

    def test_load_reads_and_releases(self):
        response = MagicMock()
        response.read.return_value = b'["x", "y"]'
        self.client.get_object.return_value = response

        p = MinioPersistence(bucket_name="history", client=self.client)
        self.assertEqual(p.load("lumeo_responses"), ["x", "y"])
        response.close.assert_called_once()
        response.release_conn.assert_called_once()

    def test_missing_object_is_empty(self):
        self.client.get_object.side_effect = FakeS3Error("NoSuchKey")
        p = MinioPersistence(bucket_name="history", client=self.client)
        self.assertEqual(p.load("lumeo_responses"), [])

    def test_other_errors_raise_ioerror(self):
        self.client.put_object.side_effect = FakeS3Error("AccessDenied")
        p = MinioPersistence(bucket_name="history", client=self.client)
        with self.assertRaises(IOError):
            p.save("lumeo_payloads", [])


class TestFactory(unittest.TestCase):
    def test_backends(self):
        self.assertIsInstance(create_persistence("memory"), MemoryPersistence)
        with self.assertRaises(ValueError):
            create_persistence("floppy")

if __name__ == '__main__':
    unittest.main()
