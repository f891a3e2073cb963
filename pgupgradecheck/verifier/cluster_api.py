# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

# Immutable snapshots of the observed cluster. A snapshot is never modified
# after capture; a new one is taken and compared instead.

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple


@dataclass(frozen=True)
class ClusterRef:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class MemberIdentity:
    # stable logical name, never reused
    name: str
    # changes every time the instance process is restarted
    uid: str


class Transition(Enum):
    Rolling = "Rolling"
    InPlace = "InPlace"
    Inconclusive = "Inconclusive"


class UpgradeMode(Enum):
    Rolling = "Rolling"
    InPlace = "InPlace"

    @property
    def expected_transition(self) -> Transition:
        return Transition[self.value]


@dataclass(frozen=True)
class ClusterState:
    ref: ClusterRef
    members: Tuple[MemberIdentity, ...]
    current_primary: Optional[str]
    target_primary: Optional[str]
    primary_timestamp: Optional[str]

    @property
    def quiesced(self) -> bool:
        return self.current_primary is not None and self.current_primary == self.target_primary

    @property
    def member_names(self) -> Tuple[str, ...]:
        return tuple(m.name for m in self.members)

    @property
    def standbys(self) -> Tuple[str, ...]:
        return tuple(m.name for m in self.members if m.name != self.current_primary)

    @property
    def instance_uids(self) -> FrozenSet[str]:
        return frozenset(m.uid for m in self.members)


@dataclass(frozen=True)
class UpgradeEvidence:
    before: FrozenSet[str]
    after: FrozenSet[str]

    @property
    def preserved(self) -> FrozenSet[str]:
        return self.before & self.after

    def classify(self) -> Transition:
        if not self.before or not self.after:
            return Transition.Inconclusive
        if self.before == self.after:
            return Transition.InPlace
        if not self.preserved and len(self.before) == len(self.after):
            return Transition.Rolling
        return Transition.Inconclusive


class BackupPhase(Enum):
    pending = "pending"
    started = "started"
    running = "running"
    completed = "completed"
    failed = "failed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "BackupPhase":
        # a freshly created backup has no status yet
        if not value:
            return cls.pending
        return cls(value.lower())

    @property
    def rank(self) -> int:
        return _BACKUP_PHASE_RANK[self]

    @property
    def terminal(self) -> bool:
        return self in (BackupPhase.completed, BackupPhase.failed)


_BACKUP_PHASE_RANK = {
    BackupPhase.pending: 0,
    BackupPhase.started: 1,
    BackupPhase.running: 1,
    BackupPhase.completed: 2,
    BackupPhase.failed: 2,
}


@dataclass(frozen=True)
class BackupRecord:
    ref: ClusterRef
    phase: BackupPhase

    @property
    def terminal(self) -> bool:
        return self.phase.terminal


@dataclass(frozen=True)
class ConfigSnapshot:
    member: str
    values: Dict[str, object] = field(default_factory=dict)

    def mismatches(self, expected: Dict[str, object]) -> Dict[str, object]:
        return {k: self.values.get(k) for k, v in expected.items() if self.values.get(k) != v}


@dataclass(frozen=True)
class RolloutEvidence:
    cluster: ClusterRef
    event_uids: FrozenSet[str]

    @property
    def count(self) -> int:
        return len(self.event_uids)

    def since(self, baseline: "RolloutEvidence") -> "RolloutEvidence":
        return RolloutEvidence(self.cluster, self.event_uids - baseline.event_uids)


class VerificationPhase(Enum):
    Baseline = "Baseline"
    AwaitingSwitchover = "AwaitingSwitchover"
    SwitchoverObserved = "SwitchoverObserved"
    AwaitingReplicaConvergence = "AwaitingReplicaConvergence"
    Converged = "Converged"
    Failed = "Failed"
