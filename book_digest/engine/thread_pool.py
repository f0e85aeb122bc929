"""Thread pools shared by source runs and summary workers."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from threading import Lock
from typing import Any, Callable, Dict, Hashable, Iterable


class ThreadPoolManager:
    """Own the shared executor plus named executors (``"summaries"``, per source)."""

    def __init__(self, default_workers: int = 4) -> None:
        self.default_workers = default_workers
        self._default_executor = ThreadPoolExecutor(
            max_workers=default_workers, thread_name_prefix="book-digest"
        )
        self._executors: Dict[str, ThreadPoolExecutor] = {}
        self._lock = Lock()

    def get(self, pool_name: str | None = None, max_workers: int | None = None) -> ThreadPoolExecutor:
        if pool_name is None:
            return self._default_executor
        with self._lock:
            if pool_name not in self._executors:
                self._executors[pool_name] = ThreadPoolExecutor(
                    max_workers=max_workers or self.default_workers,
                    thread_name_prefix=f"book-digest-{pool_name}",
                )
            return self._executors[pool_name]

    def run_all(
        self,
        calls: Iterable[tuple[Hashable, Callable[[], Any]]],
        pool_name: str | None = None,
        max_workers: int | None = None,
    ) -> dict[Hashable, Any | BaseException]:
        """Run keyed callables concurrently and wait for all of them.

        Each key maps to the callable's result, or to the exception it raised.
        """

        executor = self.get(pool_name, max_workers=max_workers)
        futures: dict[Future[Any], Hashable] = {
            executor.submit(call): key for key, call in calls
        }
        results: dict[Hashable, Any | BaseException] = {}
        for future in as_completed(futures):
            key = futures[future]
            error = future.exception()
            results[key] = error if error is not None else future.result()
        return results

    def shutdown(self, wait: bool = False) -> None:
        self._default_executor.shutdown(wait=wait)
        with self._lock:
            for executor in self._executors.values():
                executor.shutdown(wait=wait)
            self._executors.clear()


__all__ = ["ThreadPoolManager"]
