"""
Shared fixtures amongst all tests. The remote services (Globus Transfer,
S3) are replaced by small in-memory fakes.
"""

import hashlib
import os
import random
import threading
from concurrent.futures import CancelledError
from pathlib import Path
from unittest.mock import MagicMock

import globus_sdk
import pytest
from botocore.client import BaseClient
from botocore.exceptions import ClientError
from s3transfer.manager import TransferManager

from archive_proxy.models import (
    ArchiveDestination,
    ArchiveType,
    DirectoryEntry,
    FileLocation,
    Listed,
    ListingFailed,
    NotADirectory,
    NotFound,
)
from archive_proxy.progress import ProgressListener
from archive_proxy.proxies.globus import (
    NOT_DIRECTORY_GLOBUS_CODE,
    GlobusDataTransferProxy,
    GlobusSession,
)
from archive_proxy.proxies.s3 import S3DataTransferProxy, S3Session

BUCKET = "archive"
ENDPOINT = "archive-endpoint"


# A directory containing files of sizes 10 and 20 and a subdirectory
# containing a single file of size 5.
SMALL_TREE = {
    "data/a": 10,
    "data/b": 20,
    "data/sub/c": 5,
}


class DictLister:
    """
    A directory lister over a flat {path: size} dict of files.
    """

    def __init__(self, files: dict[str, int], failing: tuple[str, ...] = ()):
        self.files = files
        self.failing = failing
        self.calls = []

    def list_directory(self, location: FileLocation):
        path = location.file_id.strip("/")
        self.calls.append(path)

        if path in self.failing:
            return ListingFailed(cause="permission denied")

        if path in self.files:
            return NotADirectory()

        prefix = f"{path}/" if path else ""
        entries = {}

        for name, size in self.files.items():
            if not name.startswith(prefix):
                continue

            head, _, rest = name[len(prefix) :].partition("/")

            if rest:
                entries[head] = DirectoryEntry(name=head, type="dir")
            else:
                entries[head] = DirectoryEntry(name=head, type="file", size=size)

        if not entries and path:
            return NotFound()

        return Listed(location=location, entries=list(entries.values()))


@pytest.fixture
def small_tree_lister():
    yield DictLister(dict(SMALL_TREE))


class RecordingListener(ProgressListener):
    """
    Records every event, and sets `finished` on completion or failure.
    """

    def __init__(self):
        self.events = []
        self.finished = threading.Event()

    def transfer_progressed(self, bytes_transferred, total_bytes):
        self.events.append(("progressed", bytes_transferred, total_bytes))

    def transfer_completed(self, bytes_transferred):
        self.events.append(("completed", bytes_transferred))
        self.finished.set()

    def transfer_failed(self, message):
        self.events.append(("failed", message))
        self.finished.set()


@pytest.fixture
def listener():
    yield RecordingListener()


@pytest.fixture
def garbage_file(tmp_path) -> Path:
    """
    Returns a file filled with garbage at the path.
    """

    data = random.randbytes(1024)

    path = tmp_path / "garbage_file.txt"

    with open(path, "wb") as handle:
        handle.write(data)

    yield path

    # Delete the file for good measure.
    try:
        path.unlink()
    except FileNotFoundError:
        pass


### Globus fakes ###


class FakeTransferAPIError(globus_sdk.TransferAPIError):
    """
    A TransferAPIError that does not need an HTTP response to build.
    """

    code = None
    http_status = None

    def __init__(self, code: str, http_status: int = 400):
        Exception.__init__(self, code)
        self.code = code
        self.http_status = http_status

    def __str__(self):
        return f"({self.http_status}, {self.code})"

    def __repr__(self):
        return f"FakeTransferAPIError({self.code!r}, {self.http_status})"


class FakeGlobusEndpoint:
    """
    The 'ls' operation of a Globus endpoint serving a flat {path: size}
    dict of files.
    """

    def __init__(self, files: dict[str, int], denied: tuple[str, ...] = ()):
        self.files = {f"/{k.strip('/')}": v for k, v in files.items()}
        self.denied = denied

    def operation_ls(self, endpoint, path="/", **kwargs):
        path = "/" + path.strip("/")

        if path in self.denied:
            raise FakeTransferAPIError(
                "ExternalError.DirListingFailed.PermissionDenied", 403
            )

        if path in self.files:
            raise FakeTransferAPIError(NOT_DIRECTORY_GLOBUS_CODE, 502)

        prefix = path.rstrip("/") + "/"
        entries = {}

        for name, size in self.files.items():
            if not name.startswith(prefix):
                continue

            head, _, rest = name[len(prefix) :].partition("/")

            if rest:
                entries[head] = {"name": head, "type": "dir", "size": 4096}
            else:
                entries[head] = {"name": head, "type": "file", "size": size}

        if not entries and path != "/":
            raise FakeTransferAPIError("ClientError.NotFound", 404)

        return {
            "DATA": list(entries.values()),
            "endpoint": endpoint,
            "path": prefix,
        }


def make_globus_client(files: dict[str, int] = SMALL_TREE, **kwargs):
    client = MagicMock(spec=globus_sdk.TransferClient)
    client.operation_ls.side_effect = FakeGlobusEndpoint(files, **kwargs).operation_ls
    client.endpoint_autoactivate.return_value = {
        "code": "AutoActivated.CachedCredential"
    }
    client.get_submission_id.return_value = {"value": "submission-id"}
    client.submit_transfer.return_value = {"task_id": "task-id"}

    return client


@pytest.fixture
def globus_client():
    yield make_globus_client()


@pytest.fixture
def globus_session(globus_client):
    yield GlobusSession(transfer_client=globus_client)


@pytest.fixture
def globus_proxy():
    yield GlobusDataTransferProxy(
        archive=ArchiveDestination(
            file_location=FileLocation(file_container_id=ENDPOINT, file_id="/archive")
        ),
    )


### S3 fakes ###


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3Client(BaseClient):
    """
    An in-memory S3 client, covering the calls the proxy makes.
    """

    def __init__(self, buckets=(BUCKET,), page_size: int = 1000):
        self.buckets = {name: {} for name in buckets}
        self.page_size = page_size

    def __getattr__(self, item):
        # BaseClient resolves unknown attributes through its event system.
        raise AttributeError(item)

    def put(self, bucket: str, key: str, data: bytes, metadata=None):
        if bucket not in self.buckets:
            raise client_error("NoSuchBucket", "PutObject")

        self.buckets[bucket][key] = {
            "Body": data,
            "ETag": f'"{hashlib.md5(data).hexdigest()}"',
            "Metadata": dict(metadata or {}),
        }

    def get(self, bucket: str, key: str) -> bytes:
        try:
            return self.buckets[bucket][key]["Body"]
        except KeyError:
            raise client_error("404", "GetObject")

    def head_bucket(self, Bucket):
        if Bucket not in self.buckets:
            raise client_error("404", "HeadBucket")

        return {}

    def head_object(self, Bucket, Key):
        if Bucket not in self.buckets:
            raise client_error("NoSuchBucket", "HeadObject")

        try:
            item = self.buckets[Bucket][Key]
        except KeyError:
            raise client_error("404", "HeadObject")

        return {
            "ContentLength": len(item["Body"]),
            "ETag": item["ETag"],
            "Metadata": item["Metadata"],
        }

    def list_objects_v2(self, Bucket, Prefix="", Delimiter="", ContinuationToken=None):
        if Bucket not in self.buckets:
            raise client_error("NoSuchBucket", "ListObjectsV2")

        items = []
        seen = set()

        for key in sorted(self.buckets[Bucket]):
            if not key.startswith(Prefix):
                continue

            rest = key[len(Prefix) :]

            if Delimiter and Delimiter in rest:
                common = Prefix + rest.split(Delimiter, 1)[0] + Delimiter

                if common not in seen:
                    seen.add(common)
                    items.append(("prefix", common))
            else:
                items.append(("key", key))

        start = int(ContinuationToken or 0)
        page = items[start : start + self.page_size]
        truncated = start + self.page_size < len(items)

        response = {
            "CommonPrefixes": [{"Prefix": p} for kind, p in page if kind == "prefix"],
            "Contents": [
                {"Key": k, "Size": len(self.buckets[Bucket][k]["Body"])}
                for kind, k in page
                if kind == "key"
            ],
            "IsTruncated": truncated,
        }

        if truncated:
            response["NextContinuationToken"] = str(start + self.page_size)

        return response


class FakeTransferMeta:
    def __init__(self, size, transfer_id):
        self.size = size
        self.transfer_id = transfer_id


class FakeTransferFuture:
    """
    Stands in for an s3transfer TransferFuture. The work runs when `run` is
    called, and subscribers are notified like the real manager does. With
    interrupt=True, waiting on a pending future raises KeyboardInterrupt,
    as if the user hit Ctrl-C during the wait.
    """

    def __init__(self, meta, work, subscribers, interrupt: bool = False):
        self.meta = meta
        self._work = work
        self._subscribers = subscribers
        self._interrupt = interrupt
        self._done = False
        self._exception = None
        self.cancelled = False

    def run(self):
        if self._done:
            return

        try:
            nbytes = self._work()

            for subscriber in self._subscribers:
                subscriber.on_progress(future=self, bytes_transferred=nbytes)
        except Exception as e:
            self._exception = e

        self._finish()

    def _finish(self):
        self._done = True

        for subscriber in self._subscribers:
            subscriber.on_done(future=self)

    def done(self):
        return self._done

    def result(self):
        if not self._done and self._interrupt:
            raise KeyboardInterrupt

        assert self._done, "result() on a pending fake future would block forever"

        if self._exception is not None:
            raise self._exception

    def cancel(self):
        self.cancelled = True

        if self._done:
            return

        self._exception = CancelledError()
        self._finish()


class FakeTransferManager(TransferManager):
    """
    A TransferManager that moves bytes between local files and a
    FakeS3Client. With complete_immediately=False, transfers stay pending
    until finish_all() is called, and interrupt_waits=True makes waiting on
    them raise KeyboardInterrupt.
    """

    def __init__(
        self,
        client,
        config=None,
        complete_immediately: bool = True,
        interrupt_waits: bool = False,
    ):
        # client and config are read-only properties on TransferManager.
        self._client = client
        self._config = config
        self.complete_immediately = complete_immediately
        self.interrupt_waits = interrupt_waits
        self.pending = []
        self.submitted = []
        self.shutdown_calls = 0

    def _submit(self, size, work, subscribers):
        future = FakeTransferFuture(
            FakeTransferMeta(size, len(self.submitted)),
            work,
            list(subscribers or []),
            interrupt=self.interrupt_waits,
        )
        self.submitted.append(future)

        for subscriber in future._subscribers:
            subscriber.on_queued(future=future)

        if self.complete_immediately:
            future.run()
        else:
            self.pending.append(future)

        return future

    def upload(self, fileobj, bucket, key, extra_args=None, subscribers=None):
        def work():
            with open(fileobj, "rb") as handle:
                data = handle.read()

            self._client.put(
                bucket, key, data, metadata=(extra_args or {}).get("Metadata")
            )

            return len(data)

        size = os.path.getsize(fileobj) if os.path.exists(fileobj) else None

        return self._submit(size, work, subscribers)

    def download(self, bucket, key, fileobj, extra_args=None, subscribers=None):
        def work():
            data = self._client.get(bucket, key)

            with open(fileobj, "wb") as handle:
                handle.write(data)

            return len(data)

        return self._submit(None, work, subscribers)

    def finish_all(self):
        while self.pending:
            self.pending.pop(0).run()

    def shutdown(self, cancel=False, cancel_msg=""):
        self.shutdown_calls += 1


@pytest.fixture
def s3_client():
    client = FakeS3Client()

    for key, size in SMALL_TREE.items():
        client.put(BUCKET, key, b"x" * size)

    yield client


@pytest.fixture
def s3_session(s3_client):
    yield S3Session(client=s3_client, transfer_manager=FakeTransferManager(s3_client))


@pytest.fixture
def pending_s3_session(s3_client):
    """
    A session whose transfers only complete when finish_all() is called on
    its transfer manager.
    """
    yield S3Session(
        client=s3_client,
        transfer_manager=FakeTransferManager(s3_client, complete_immediately=False),
    )


@pytest.fixture
def s3_proxy():
    yield S3DataTransferProxy(
        archive=ArchiveDestination(
            file_location=FileLocation(file_container_id=BUCKET, file_id="uploads")
        ),
        cancel_poll_interval=0.01,
    )


@pytest.fixture
def temporary_s3_proxy():
    yield S3DataTransferProxy(
        archive=ArchiveDestination(
            file_location=FileLocation(file_container_id=BUCKET, file_id="staging"),
            type=ArchiveType.TEMPORARY_ARCHIVE,
        ),
        cancel_poll_interval=0.01,
    )
