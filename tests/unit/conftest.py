# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

# In-memory doubles for the Environment interfaces

import copy
import itertools
import threading
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest

from pgupgradecheck.verifier import consts
from pgupgradecheck.verifier.api import (Clock, CommandChannel, CommandResult, Environment,
                                         ExecTarget, ResourceClient)
from pgupgradecheck.verifier.api_utils import lookup
from pgupgradecheck.verifier.errors import CommandError, ConflictError, NotFoundError


class FakeClock(Clock):
    def __init__(self, start: float = 0):
        self.lock = threading.Lock()
        self.time = start
        self.sleeps: List[float] = []

    def now(self) -> float:
        with self.lock:
            return self.time

    def sleep(self, seconds: float) -> None:
        with self.lock:
            self.sleeps.append(seconds)
            self.time += seconds


def _matches(selector: Optional[str], get: Callable[[str], Optional[str]]) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if get(key) != value:
            return False
    return True


Hook = Callable[["FakeResourceClient", dict], None]


class FakeResourceClient(ResourceClient):
    """
    Objects are kept by (kind, namespace, name). get() of a scripted object
    returns the next item of its script (the last one repeats); hooks run on
    the stored copy after create/update, to simulate what controllers do.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self.objects: Dict[Tuple[str, Optional[str], str], dict] = {}
        self.scripts: Dict[Tuple[str, Optional[str], str], list] = {}
        self.list_scripts: Dict[Tuple[str, Optional[str]], list] = {}
        self.on_create: Dict[str, List[Hook]] = {}
        self.on_update: Dict[str, List[Hook]] = {}
        self.failures: Dict[str, list] = {}
        self.calls: List[Tuple[str, str, Optional[str], str]] = []
        self.uids = itertools.count(1)

    # test setup

    def add(self, kind: str, obj: dict) -> dict:
        with self.lock:
            obj = copy.deepcopy(obj)
            meta = obj.setdefault("metadata", {})
            meta.setdefault("uid", f"uid-{next(self.uids)}")
            meta.setdefault("resourceVersion", "1")
            self.objects[(kind, meta.get("namespace"), meta["name"])] = obj
            return obj

    def remove(self, kind: str, namespace: Optional[str], name: str) -> None:
        with self.lock:
            self.objects.pop((kind, namespace, name), None)

    def stored(self, kind: str, namespace: Optional[str], name: str) -> dict:
        return self.objects[(kind, namespace, name)]

    def script(self, kind: str, namespace: Optional[str], name: str, sequence: list) -> None:
        self.scripts[(kind, namespace, name)] = list(sequence)

    def script_list(self, kind: str, namespace: Optional[str], sequence: list) -> None:
        self.list_scripts[(kind, namespace)] = list(sequence)

    def fail_next(self, op: str, error: Exception) -> None:
        self.failures.setdefault(op, []).append(error)

    def hook(self, op: str, kind: str, f: Hook) -> None:
        hooks = self.on_create if op == "create" else self.on_update
        hooks.setdefault(kind, []).append(f)

    def _next(self, sequences: dict, key):
        seq = sequences[key]
        item = seq.pop(0) if len(seq) > 1 else seq[0]
        if isinstance(item, Exception):
            raise item
        return copy.deepcopy(item)

    def _check_failure(self, op: str) -> None:
        if self.failures.get(op):
            raise self.failures[op].pop(0)

    # ResourceClient

    def get(self, kind: str, namespace: Optional[str], name: str) -> dict:
        with self.lock:
            self.calls.append(("get", kind, namespace, name))
            self._check_failure("get")
            key = (kind, namespace, name)
            if key in self.scripts:
                return self._next(self.scripts, key)
            if key not in self.objects:
                raise NotFoundError(f"{kind} not found", f"{namespace}/{name}")
            return copy.deepcopy(self.objects[key])

    def list(self, kind: str, namespace: Optional[str], *,
             label_selector: Optional[str] = None,
             field_selector: Optional[str] = None) -> List[dict]:
        with self.lock:
            self.calls.append(("list", kind, namespace, label_selector or field_selector or ""))
            self._check_failure("list")
            if (kind, namespace) in self.list_scripts:
                return self._next(self.list_scripts, (kind, namespace))
            items = []
            for (k, ns, _), obj in sorted(self.objects.items(), key=lambda i: str(i[0])):
                if k != kind or (namespace and ns != namespace):
                    continue
                labels = obj["metadata"].get("labels") or {}
                if not _matches(label_selector, labels.get):
                    continue
                if not _matches(field_selector, lambda path: lookup(obj, path)):
                    continue
                items.append(copy.deepcopy(obj))
            return items

    def create(self, kind: str, body: dict) -> dict:
        with self.lock:
            meta = body["metadata"]
            self.calls.append(("create", kind, meta.get("namespace"), meta["name"]))
            self._check_failure("create")
            if (kind, meta.get("namespace"), meta["name"]) in self.objects:
                raise ConflictError(f"{kind} already exists", f"{meta.get('namespace')}/{meta['name']}")
            obj = self.add(kind, body)
            for hook in self.on_create.get(kind, []):
                hook(self, obj)
            return copy.deepcopy(obj)

    def update(self, kind: str, body: dict) -> dict:
        with self.lock:
            meta = body["metadata"]
            key = (kind, meta.get("namespace"), meta["name"])
            self.calls.append(("update", kind, meta.get("namespace"), meta["name"]))
            self._check_failure("update")
            if key not in self.objects:
                raise NotFoundError(f"{kind} not found", f"{meta.get('namespace')}/{meta['name']}")
            current = self.objects[key]["metadata"]["resourceVersion"]
            if meta.get("resourceVersion") not in (None, current):
                raise ConflictError("the object has been modified", f"{meta.get('namespace')}/{meta['name']}")
            obj = copy.deepcopy(body)
            obj["metadata"]["resourceVersion"] = str(int(current) + 1)
            obj["metadata"].setdefault("uid", self.objects[key]["metadata"].get("uid"))
            self.objects[key] = obj
            for hook in self.on_update.get(kind, []):
                hook(self, obj)
            return copy.deepcopy(obj)

    def delete(self, kind: str, namespace: Optional[str], name: str) -> None:
        with self.lock:
            self.calls.append(("delete", kind, namespace, name))
            self.remove(kind, namespace, name)

    def updates(self, kind: str) -> List[Tuple[str, Optional[str], str]]:
        return [c for c in self.calls if c[0] == "update" and c[1] == kind]


Response = Union[str, Exception, Callable[[ExecTarget, List[str]], str]]


class FakeCommandChannel(CommandChannel):
    """
    Responses are registered per pod and a substring of the command line.
    A list of responses is consumed in order, the last one repeats.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.responses: List[Tuple[Optional[str], str, str, list]] = []
        self.calls: List[Tuple[ExecTarget, List[str]]] = []

    def on(self, pod: str, match: str, *responses: Response, namespace: Optional[str] = None) -> None:
        self.responses.insert(0, (namespace, pod, match, list(responses)))

    def commands_for(self, pod: str) -> List[str]:
        return [" ".join(cmd) for target, cmd in self.calls if target.pod == pod]

    def run(self, target: ExecTarget, command: List[str]) -> CommandResult:
        line = " ".join(command)
        with self.lock:
            self.calls.append((target, command))
            for namespace, pod, match, seq in self.responses:
                if namespace not in (None, target.namespace):
                    continue
                if pod == target.pod and match in line:
                    response = seq.pop(0) if len(seq) > 1 else seq[0]
                    break
            else:
                raise CommandError(f"no response scripted for {line}", str(target), returncode=1)

        if callable(response):
            response = response(target, command)
        if isinstance(response, Exception):
            raise response
        return CommandResult(response)


# object builders

def make_pod(namespace: str, name: str, uid: str, cluster: Optional[str] = None,
             labels: Optional[dict] = None) -> dict:
    labels = dict(labels or {})
    if cluster:
        labels[consts.CLUSTER_LABEL] = cluster
    return {"apiVersion": "v1", "kind": "Pod",
            "metadata": {"namespace": namespace, "name": name, "uid": uid, "labels": labels}}


def make_cluster(namespace: str, name: str, instances: int = 3, ready: Optional[int] = None,
                 phase: str = consts.CLUSTER_HEALTHY_PHASE, primary: Optional[str] = "",
                 target: Optional[str] = "", timestamp: str = "2024-01-01T00:00:00Z",
                 parameters: Optional[dict] = None) -> dict:
    if primary == "":
        primary = f"{name}-1"
    if target == "":
        target = primary
    return {
        "apiVersion": f"{consts.API_GROUP}/{consts.API_VERSION}",
        "kind": "Cluster",
        "metadata": {"namespace": namespace, "name": name},
        "spec": {"instances": instances,
                 "postgresql": {"parameters": dict(parameters or {})}},
        "status": {"readyInstances": instances if ready is None else ready,
                   "phase": phase,
                   "currentPrimary": primary,
                   "targetPrimary": target,
                   "currentPrimaryTimestamp": timestamp},
    }


def add_members(resources: FakeResourceClient, namespace: str, cluster: str,
                count: int = 3, generation: str = "a") -> List[str]:
    uids = []
    for i in range(1, count + 1):
        uid = f"{cluster}-{i}-{generation}"
        resources.add("pod", make_pod(namespace, f"{cluster}-{i}", uid, cluster))
        uids.append(uid)
    return uids


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resources() -> FakeResourceClient:
    return FakeResourceClient()


@pytest.fixture
def commands() -> FakeCommandChannel:
    return FakeCommandChannel()


@pytest.fixture
def env(resources, commands, clock) -> Environment:
    return Environment(resources=resources, commands=commands, clock=clock)
