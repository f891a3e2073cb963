# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

import os
from typing import List, Optional

import yaml

from . import consts
from .errors import ConfigurationError


def load_manifest(path: str) -> List[dict]:
    """
    Load all documents of a YAML file, skipping empty ones.
    """
    with open(path) as f:
        docs = [d for d in yaml.safe_load_all(f) if d]
    for d in docs:
        if not isinstance(d, dict) or "kind" not in d:
            raise ConfigurationError(f"not a kubernetes object: {d!r}", path)
    return docs


def load_single(path: str, kind: Optional[str] = None) -> dict:
    docs = load_manifest(path)
    if len(docs) != 1:
        raise ConfigurationError(f"expected one object, found {len(docs)}", path)
    if kind and docs[0]["kind"] != consts.KINDS[kind][1]:
        raise ConfigurationError(f"expected a {consts.KINDS[kind][1]}, found {docs[0]['kind']}", path)
    return docs[0]


def short_kind(doc: dict) -> str:
    # kinds without a short name (RBAC, webhooks...) are resolved by the
    # resource client from the apiVersion of the document itself
    return consts.KIND_BY_NAME.get(doc["kind"], doc["kind"])


def with_namespace(doc: dict, namespace: str) -> dict:
    doc = dict(doc)
    doc["metadata"] = dict(doc.get("metadata", {}))
    doc["metadata"].setdefault("namespace", namespace)
    return doc


def fixture_path(fixtures_dir: str, name: str) -> str:
    return os.path.join(fixtures_dir, name)
