"""Executors for work an image offloads from the caller's thread."""

from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Protocol

from openstack_cloud.utils import sanitize_name


class ExecutorFactory(Protocol):
    """Creates the executor owned by one image."""

    def create_executor(self, name: str) -> Executor: ...


class ThreadPoolExecutorFactory:
    """Default factory: a small named thread pool per image."""

    def __init__(self, max_workers: int = 1) -> None:
        self.max_workers = max_workers

    def create_executor(self, name: str) -> Executor:
        return ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix=f"openstack-image-{sanitize_name(name)}",
        )
