import abc
import io
import json
import logging
import threading
from typing import Dict, List, Optional

from minio import Minio
from minio.error import S3Error

from lumeo.common import config


class PersistenceAdapter(abc.ABC):
    """
    Ordered string-list storage keyed by namespace. Payload history and
    response history are saved under independent keys.
    """

    @abc.abstractmethod
    def save(self, key: str, values: List[str]) -> None:
        pass

    @abc.abstractmethod
    def load(self, key: str) -> List[str]:
        """Returns the saved list, or an empty list for an unknown key."""
        pass


class MemoryPersistence(PersistenceAdapter):
    def __init__(self):
        self._data: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def save(self, key: str, values: List[str]) -> None:
        with self._lock:
            self._data[key] = list(values)

    def load(self, key: str) -> List[str]:
        with self._lock:
            return list(self._data.get(key, []))


class MinioPersistence(PersistenceAdapter):
    def __init__(self, endpoint=None, access_key=None, secret_key=None, bucket_name=None, client: Optional[Minio] = None):
        self.endpoint = endpoint or config.MINIO_ENDPOINT
        self.access_key = access_key or config.MINIO_ACCESS_KEY
        self.secret_key = secret_key or config.MINIO_SECRET_KEY
        self.bucket_name = bucket_name or config.MINIO_BUCKET
        self.logger = logging.getLogger("lumeo.storage.minio")

        self.client = client or Minio(
            self.endpoint,
            access_key=self.access_key,
            secret_key=self.secret_key,
            secure=False
        )
        self._ensure_bucket()

    def _ensure_bucket(self):
        if not self.client.bucket_exists(self.bucket_name):
            self.logger.info(f"Creating bucket {self.bucket_name}")
            self.client.make_bucket(self.bucket_name)

    def _object_name(self, key: str) -> str:
        return f"{key}.json"

    def save(self, key: str, values: List[str]) -> None:
        data = json.dumps(list(values)).encode("utf-8")
        try:
            self.client.put_object(
                self.bucket_name,
                self._object_name(key),
                io.BytesIO(data),
                len(data),
                content_type="application/json"
            )
        except S3Error as e:
            raise IOError(f"Failed to save {key}: {e}") from e

    def load(self, key: str) -> List[str]:
        response = None
        try:
            response = self.client.get_object(self.bucket_name, self._object_name(key))
            values = json.loads(response.read())
        except S3Error as e:
            if e.code == "NoSuchKey":
                return []
            raise IOError(f"Failed to load {key}: {e}") from e
        finally:
            if response is not None:
                response.close()
                response.release_conn()
        return [str(v) for v in values]


def create_persistence(backend: Optional[str] = None) -> PersistenceAdapter:
    backend = backend or config.PERSISTENCE_BACKEND
    if backend == "memory":
        return MemoryPersistence()
    elif backend == "sqlite":
        from lumeo.common.storage.database import SQLitePersistence
        return SQLitePersistence()
    elif backend == "minio":
        return MinioPersistence()
    else:
        raise ValueError(f"Unknown persistence backend: {backend}")
