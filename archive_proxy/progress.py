"""
Progress notification. ProgressListener is the contract callers implement;
ProgressBridge translates s3transfer's subscriber callbacks (delivered on
the transfer manager's worker threads) into that contract.
"""

import abc
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from loguru import logger
from s3transfer.subscribers import BaseSubscriber


class ProgressListener(abc.ABC):
    """
    Caller-supplied sink for progress of an asynchronous transfer. Methods
    are called from a dispatcher thread, never the caller's thread, in the
    order the events happened.
    """

    def transfer_progressed(self, bytes_transferred: int, total_bytes: Optional[int]):
        """
        Called as data moves. Total may be None if the backend does not
        know it yet.
        """
        return

    @abc.abstractmethod
    def transfer_completed(self, bytes_transferred: int):
        raise NotImplementedError

    @abc.abstractmethod
    def transfer_failed(self, message: str):
        raise NotImplementedError


class ProgressBridge(BaseSubscriber):
    """
    An s3transfer subscriber that counts transferred bytes and, when given a
    listener, forwards events to it. The byte count is always kept so that
    size queries work for synchronous transfers too.

    Events are handed to a single-thread executor so that the transfer
    manager's workers never wait on the listener.
    """

    def __init__(self, listener: Optional[ProgressListener] = None):
        self.listener = listener

        self._lock = threading.Lock()
        self._bytes_transferred = 0
        self._total_bytes: Optional[int] = None

        self._dispatcher = None

        if listener is not None:
            self._dispatcher = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="archive-proxy-progress"
            )

    @property
    def bytes_transferred(self) -> int:
        with self._lock:
            return self._bytes_transferred

    @property
    def total_bytes(self) -> Optional[int]:
        with self._lock:
            return self._total_bytes

    def _dispatch(self, method: str, *args):
        if self._dispatcher is None:
            return

        self._dispatcher.submit(self._notify, method, *args)

    def _notify(self, method: str, *args):
        try:
            getattr(self.listener, method)(*args)
        except Exception as e:
            # Nobody is waiting on this thread, so the log is the only place
            # a broken listener can show up.
            logger.exception(f"Progress listener raised in {method}: {e}")

    def on_queued(self, future, **kwargs):
        with self._lock:
            self._total_bytes = future.meta.size

    def on_progress(self, future, bytes_transferred, **kwargs):
        with self._lock:
            self._bytes_transferred += bytes_transferred
            self._total_bytes = future.meta.size
            so_far = self._bytes_transferred
            total = self._total_bytes

        self._dispatch("transfer_progressed", so_far, total)

    def on_done(self, future, **kwargs):
        try:
            future.result()
        except Exception as e:
            logger.error(f"Transfer {future.meta.transfer_id} failed: {e}")
            self._dispatch("transfer_failed", str(e))
        else:
            self._dispatch("transfer_completed", self.bytes_transferred)
        finally:
            if self._dispatcher is not None:
                self._dispatcher.shutdown(wait=False)
