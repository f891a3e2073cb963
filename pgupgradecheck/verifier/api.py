# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

# Narrow interfaces to the systems the verifiers observe. Everything in this
# package talks to the cluster through an Environment, so every component can
# be exercised against in-memory doubles.

from abc import ABC, abstractmethod
from dataclasses import dataclass
from logging import getLogger
from typing import List, Optional
import time

from .errors import ConflictError, NotFoundError

logger = getLogger("api")


@dataclass(frozen=True)
class ExecTarget:
    namespace: str
    pod: str
    container: Optional[str] = None

    def __str__(self) -> str:
        if self.container:
            return f"{self.namespace}/{self.pod}[{self.container}]"
        return f"{self.namespace}/{self.pod}"


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str = ""


class CommandChannel(ABC):
    @abstractmethod
    def run(self, target: ExecTarget, command: List[str]) -> CommandResult:
        """
        Execute command inside target and return its output.
        Raises CommandError on failure. Never retries on its own.
        """
        ...


class ResourceClient(ABC):
    """
    Typed access to cluster management objects, addressed by short kind name
    (see consts.KINDS). Objects are plain dicts as returned by the API.
    """

    @abstractmethod
    def get(self, kind: str, namespace: Optional[str], name: str) -> dict:
        ...

    @abstractmethod
    def list(self, kind: str, namespace: Optional[str], *,
             label_selector: Optional[str] = None,
             field_selector: Optional[str] = None) -> List[dict]:
        ...

    @abstractmethod
    def create(self, kind: str, body: dict) -> dict:
        ...

    @abstractmethod
    def update(self, kind: str, body: dict) -> dict:
        ...

    @abstractmethod
    def delete(self, kind: str, namespace: Optional[str], name: str) -> None:
        """
        Delete the object. Deleting an object that does not exist is not an error.
        """
        ...


class Clock(ABC):
    @abstractmethod
    def now(self) -> float:
        ...

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        ...


class SystemClock(Clock):
    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


@dataclass(frozen=True)
class Environment:
    resources: ResourceClient
    commands: CommandChannel
    clock: Clock


def apply_resource(env: Environment, kind: str, body: dict) -> dict:
    """
    Create the object, or replace the existing one keeping its resourceVersion.
    """
    meta = body.get("metadata", {})
    try:
        return env.resources.create(kind, body)
    except ConflictError:
        pass

    logger.debug(f"{kind} {meta.get('namespace')}/{meta.get('name')} exists, updating")
    existing = env.resources.get(kind, meta.get("namespace"), meta["name"])
    body = dict(body)
    body["metadata"] = dict(meta)
    body["metadata"]["resourceVersion"] = existing["metadata"].get("resourceVersion")
    return env.resources.update(kind, body)


def exists(env: Environment, kind: str, namespace: Optional[str], name: str) -> bool:
    try:
        env.resources.get(kind, namespace, name)
        return True
    except NotFoundError:
        return False
