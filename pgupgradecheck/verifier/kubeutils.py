# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

# Adapters from the Environment interfaces to a real kubernetes cluster:
# objects through the python client, commands through `kubectl exec` so they
# go through the same code path as an end-user.

import subprocess
from logging import getLogger
from typing import Callable, List, Optional, TypeVar

from kubernetes import client, config, dynamic
from kubernetes.client.rest import ApiException

from . import consts
from .api import CommandChannel, CommandResult, Environment, ExecTarget, ResourceClient, SystemClock
from .errors import ApiUnavailableError, CommandError, ConfigurationError, ConflictError, NotFoundError

logger = getLogger("kubeutils")

debug_kubectl = False

T = TypeVar("T")


def load_kube_config(context: Optional[str] = None) -> client.ApiClient:
    try:
        # outside k8s
        config.load_kube_config(context=context)
    except config.config_exception.ConfigException:
        try:
            # inside a k8s pod
            config.load_incluster_config()
        except config.config_exception.ConfigException:
            raise ConfigurationError("Could not configure kubernetes python client")
    return client.ApiClient()


def translate_api_exception(e: ApiException, what: str):
    if e.status == 404:
        return NotFoundError(f"{e.reason}", what)
    if e.status == 409:
        return ConflictError(f"{e.reason}", what)
    return ApiUnavailableError(f"{e.status} {e.reason}", what, e.status)


def decode_stream(s) -> str:
    if s is None:
        return ""
    return s.decode("utf8", errors="replace")


class KubeResourceClient(ResourceClient):
    def __init__(self, api_client: client.ApiClient):
        self.dynamic = dynamic.DynamicClient(api_client)

    def _resource(self, kind: str, body: Optional[dict] = None):
        if kind in consts.KINDS:
            api_version, kind_name = consts.KINDS[kind]
        elif body and "apiVersion" in body:
            api_version, kind_name = body["apiVersion"], body["kind"]
        else:
            raise ConfigurationError(f"unknown kind {kind}")
        return self.dynamic.resources.get(api_version=api_version, kind=kind_name)

    def _call(self, what: str, f: Callable[[], T]) -> T:
        try:
            return f()
        except ApiException as e:
            raise translate_api_exception(e, what)

    def get(self, kind: str, namespace: Optional[str], name: str) -> dict:
        rsrc = self._resource(kind)
        return self._call(f"{kind} {namespace}/{name}",
                          lambda: rsrc.get(name=name, namespace=namespace).to_dict())

    def list(self, kind: str, namespace: Optional[str], *,
             label_selector: Optional[str] = None,
             field_selector: Optional[str] = None) -> List[dict]:
        rsrc = self._resource(kind)
        kwargs = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector
        r = self._call(f"{kind} list in {namespace}",
                       lambda: rsrc.get(namespace=namespace, **kwargs).to_dict())
        return r.get("items") or []

    def create(self, kind: str, body: dict) -> dict:
        rsrc = self._resource(kind, body)
        meta = body.get("metadata", {})
        namespace = meta.get("namespace") if rsrc.namespaced else None
        return self._call(f"create {kind} {namespace}/{meta.get('name')}",
                          lambda: rsrc.create(body=body, namespace=namespace).to_dict())

    def update(self, kind: str, body: dict) -> dict:
        rsrc = self._resource(kind, body)
        meta = body.get("metadata", {})
        namespace = meta.get("namespace") if rsrc.namespaced else None
        return self._call(f"update {kind} {namespace}/{meta.get('name')}",
                          lambda: rsrc.replace(body=body, namespace=namespace).to_dict())

    def delete(self, kind: str, namespace: Optional[str], name: str) -> None:
        rsrc = self._resource(kind)
        try:
            rsrc.delete(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return
            raise translate_api_exception(e, f"delete {kind} {namespace}/{name}")


class KubectlCommandChannel(CommandChannel):
    def __init__(self, kubectl_path: str = "kubectl", context: Optional[str] = None,
                 timeout: Optional[float] = 60):
        self.kubectl_path = kubectl_path
        self.context = context
        self.timeout = timeout

    def argv(self, target: ExecTarget, command: List[str]) -> List[str]:
        argv = [self.kubectl_path]
        if self.context:
            argv.append(f"--context={self.context}")
        argv += ["exec", target.pod]
        if target.container:
            argv += ["-c", target.container]
        return argv + ["-n", target.namespace, "--"] + command

    def run(self, target: ExecTarget, command: List[str]) -> CommandResult:
        argv = self.argv(target, command)
        if debug_kubectl:
            logger.debug("run %s", " ".join(argv))
        try:
            r = subprocess.run(argv, timeout=self.timeout,
                               stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except subprocess.TimeoutExpired as e:
            raise CommandError(f"{' '.join(command)} timed out after {self.timeout}s", str(target),
                               decode_stream(e.stdout), decode_stream(e.stderr))

        stdout, stderr = decode_stream(r.stdout), decode_stream(r.stderr)
        if debug_kubectl:
            logger.debug("rc = %s, stdout = %s, stderr = %s", r.returncode, stdout, stderr)
        if r.returncode != 0:
            raise CommandError(f"{' '.join(command)} failed (rc={r.returncode}): {stderr.strip()}",
                               str(target), stdout, stderr, r.returncode)
        return CommandResult(stdout, stderr)


def connect(kubectl_path: str = "kubectl", context: Optional[str] = None) -> Environment:
    api_client = load_kube_config(context)
    return Environment(resources=KubeResourceClient(api_client),
                       commands=KubectlCommandChannel(kubectl_path, context),
                       clock=SystemClock())
