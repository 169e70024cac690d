"""
Narrow clients for the object store and the record store.

The workflow and the uploader only ever see the abstract interfaces here,
so they can run against in-memory fakes as well as the Django-backed
implementations.
"""

from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Callable, Dict, Optional
from urllib.parse import urljoin

import structlog
from django.core.files import File
from django.core.files.storage import Storage, default_storage
from django.db import DatabaseError
from django.db.models.signals import post_save

from services.agents.models import Agent

from .exceptions import RecordNotFound, RecordStoreError, UploadError
from .models import CallRecord

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int], None]

CALLS = "calls"
AGENTS = "agents"


class ObjectStore(ABC):
    @abstractmethod
    def upload(
        self,
        fileobj: BinaryIO,
        key: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Write one object and return its retrieval URL.

        Raises:
            UploadError: the transfer failed; callers treat it as retryable.
        """


class RecordStore(ABC):
    @abstractmethod
    def create(self, collection: str, fields: Dict[str, Any]) -> Any:
        """Create a record and return its store-assigned id."""

    @abstractmethod
    def get(self, collection: str, record_id: Any) -> Optional[Dict[str, Any]]:
        """Return the record's fields, or None when it does not exist."""

    @abstractmethod
    def update(self, collection: str, record_id: Any, fields: Dict[str, Any]) -> None:
        """
        Apply a partial update.

        Raises:
            RecordNotFound: no record with that id.
            RecordStoreError: the write failed.
        """

    @abstractmethod
    def update_if(
        self,
        collection: str,
        record_id: Any,
        expected: Dict[str, Any],
        fields: Dict[str, Any],
    ) -> bool:
        """
        Apply fields only while the record still matches expected, atomically.

        Returns False when the record is missing or no longer matches.
        """

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        record_id: Any,
        on_change: Callable[[Dict[str, Any]], None],
    ) -> Callable[[], None]:
        """Call on_change with the fresh fields after every write; returns an unsubscribe callable."""


class _ProgressFile(File):
    """Reports how much of the source has been read by the storage backend."""

    def __init__(self, file, name, on_progress: Optional[ProgressCallback]):
        super().__init__(file, name)
        self._total = self.size or 0
        self._sent = 0
        self._on_progress = on_progress

    def read(self, *args, **kwargs):
        data = self.file.read(*args, **kwargs)
        self._sent += len(data)
        if self._on_progress and self._total:
            # 100 is reserved for the confirmed write
            self._on_progress(min(99, int(self._sent * 100 / self._total)))
        return data

    def seek(self, offset, whence=0):
        if offset == 0 and whence == 0:
            self._sent = 0
        return self.file.seek(offset, whence)


class DjangoStorageObjectStore(ObjectStore):
    """
    Object store on top of a Django storage backend.

    With USE_S3 the default storage is django-storages' S3 backend, otherwise
    the local filesystem; relative URLs are made absolute with base_url.
    """

    def __init__(self, storage: Optional[Storage] = None, base_url: str = ""):
        self.storage = storage or default_storage
        self.base_url = base_url

    def upload(self, fileobj, key, on_progress=None):
        fileobj.seek(0)
        content = _ProgressFile(fileobj, key, on_progress)

        try:
            name = self.storage.save(key, content)
            url = self.storage.url(name)
        except Exception as e:
            raise UploadError(f"Could not store '{key}': {e}") from e

        if self.base_url and "://" not in url:
            url = urljoin(self.base_url.rstrip("/") + "/", url.lstrip("/"))
        return url


def _to_fields(instance) -> Dict[str, Any]:
    return {f.attname: getattr(instance, f.attname) for f in instance._meta.concrete_fields}


class DjangoRecordStore(RecordStore):
    models = {
        CALLS: CallRecord,
        AGENTS: Agent,
    }

    def _model(self, collection):
        try:
            return self.models[collection]
        except KeyError:
            raise RecordStoreError(f"Unknown collection '{collection}'.")

    def create(self, collection, fields):
        model = self._model(collection)
        try:
            instance = model.objects.create(**fields)
        except DatabaseError as e:
            raise RecordStoreError(f"Could not create {collection} record: {e}") from e
        return instance.pk

    def _load(self, model, record_id):
        try:
            return model.objects.get(pk=record_id)
        except (model.DoesNotExist, ValueError):
            return None
        except DatabaseError as e:
            raise RecordStoreError(f"Could not read record {record_id!r}: {e}") from e

    def get(self, collection, record_id):
        instance = self._load(self._model(collection), record_id)
        if instance is None:
            return None
        return _to_fields(instance)

    def update(self, collection, record_id, fields):
        model = self._model(collection)
        instance = self._load(model, record_id)
        if instance is None:
            raise RecordNotFound(collection, record_id)

        for name, value in fields.items():
            setattr(instance, name, value)

        update_fields = list(fields)
        if collection == AGENTS:
            update_fields.append("updated_at")

        try:
            # save() rather than queryset.update() so post_save reaches subscribers
            instance.save(update_fields=update_fields)
        except DatabaseError as e:
            raise RecordStoreError(f"Could not update record {record_id!r}: {e}") from e

    def update_if(self, collection, record_id, expected, fields):
        model = self._model(collection)
        try:
            changed = model.objects.filter(pk=record_id, **expected).update(**fields)
        except ValueError:
            return False
        except DatabaseError as e:
            raise RecordStoreError(f"Could not update record {record_id!r}: {e}") from e

        if not changed:
            return False

        # queryset.update() skips signals
        instance = self._load(model, record_id)
        if instance is not None:
            post_save.send(
                sender=model,
                instance=instance,
                created=False,
                update_fields=frozenset(fields),
                raw=False,
                using=instance._state.db,
            )
        return True

    def subscribe(self, collection, record_id, on_change):
        model = self._model(collection)
        wanted = str(record_id)

        def receiver(sender, instance, **kwargs):
            if str(instance.pk) == wanted:
                on_change(_to_fields(instance))

        post_save.connect(receiver, sender=model, weak=False)
        logger.debug("record_subscribed", collection=collection, record_id=record_id)

        def unsubscribe():
            post_save.disconnect(receiver, sender=model)

        return unsubscribe
