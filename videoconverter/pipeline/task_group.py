import concurrent.futures
import logging
import threading
from typing import Any, Callable, Dict, Optional


class TaskGroup:
    """Spawn-and-join group of tasks on a dedicated thread pool.

    The pool is sized to the number of tasks the caller expects, so every
    spawned task gets its own thread and none waits for a sibling. join()
    is the barrier that waits for all of them. An exception escaping a task
    is logged with its traceback and counted in ``failed``; sibling tasks
    are not affected.

    Args:
        name: Prefix of the worker thread names.
        size: Expected number of tasks.
    """

    def __init__(self, name: str, size: int = 1):
        self.name = name
        self.logger = logging.getLogger(__name__)
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max(size, 1), thread_name_prefix=name
        )
        self._futures: Dict[concurrent.futures.Future, str] = {}
        self._lock = threading.Lock()
        self.failed = 0

    def spawn(self, func: Callable[..., Any], *args: Any, name: Optional[str] = None) -> concurrent.futures.Future:
        future = self._executor.submit(func, *args)
        with self._lock:
            self._futures[future] = name or f"{self.name}-{len(self._futures) + 1}"
        return future

    def __len__(self) -> int:
        with self._lock:
            return len(self._futures)

    def join(self):
        with self._lock:
            futures = dict(self._futures)
        done, _ = concurrent.futures.wait(futures)
        for future in done:
            try:
                future.result()
            except Exception:
                self.failed += 1
                self.logger.exception(f"Task {futures[future]} in group {self.name} failed")
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "TaskGroup":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.join()
        return False
