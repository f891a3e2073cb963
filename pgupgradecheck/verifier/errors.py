# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

from typing import Any, List, Optional, Tuple


class VerificationError(Exception):
    def __init__(self, msg: str, target: Optional[str] = None):
        if target:
            msg = f"{target}: {msg}"
        super().__init__(msg)
        self.target = target


class ConfigurationError(VerificationError):
    pass


# Errors retried inside the polling loops

class TransientError(VerificationError):
    pass


class CommandError(TransientError):
    def __init__(self, msg: str, target: Optional[str] = None,
                 stdout: str = "", stderr: str = "", returncode: Optional[int] = None):
        super().__init__(msg, target)
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode


class ApiUnavailableError(TransientError):
    def __init__(self, msg: str, target: Optional[str] = None, status: Optional[int] = None):
        super().__init__(msg, target)
        self.status = status


class NotFoundError(ApiUnavailableError):
    def __init__(self, msg: str, target: Optional[str] = None):
        super().__init__(msg, target, 404)


class ConflictError(ApiUnavailableError):
    def __init__(self, msg: str, target: Optional[str] = None):
        super().__init__(msg, target, 409)


class WaitTimeoutError(VerificationError, TimeoutError):
    def __init__(self, what: str, timeout: float, target: Optional[str] = None,
                 last_value: Any = None):
        msg = f"timeout after {timeout}s waiting for {what}"
        if last_value is not None:
            msg += f" (last value: {last_value!r})"
        super().__init__(msg, target)
        self.what = what
        self.timeout = timeout
        self.last_value = last_value


# Errors signaling that the cluster broke a guarantee. Never retried.

class InconsistentStateError(VerificationError):
    pass


class TransitionMismatchError(InconsistentStateError):
    def __init__(self, msg: str, target: Optional[str] = None, observed=None, expected=None):
        super().__init__(msg, target)
        self.observed = observed
        self.expected = expected


class MemberVerificationError(VerificationError):
    """
    Collected failures of a check performed independently on every member.
    """

    def __init__(self, what: str, failures: List[Tuple[str, Exception]],
                 target: Optional[str] = None):
        details = "; ".join(f"{member}: {err}" for member, err in failures)
        super().__init__(f"{what} failed on {len(failures)} member(s): {details}", target)
        self.what = what
        self.failures = failures

    @property
    def members(self) -> List[str]:
        return [member for member, _ in self.failures]


class PartialPropagationError(MemberVerificationError, InconsistentStateError):
    def __init__(self, what: str, failures: List[Tuple[str, Exception]],
                 converged: List[str], target: Optional[str] = None):
        super().__init__(what, failures, target)
        self.converged = converged


class ScenarioError(VerificationError):
    def __init__(self, failures: List[Tuple[str, Exception]]):
        details = "\n    ".join(f"{name}: {err}" for name, err in failures)
        super().__init__(f"{len(failures)} scenario(s) failed:\n    {details}")
        self.failures = failures


class RolloutIncompleteError(WaitTimeoutError):
    """
    Fewer instance managers reported an upgrade than the cluster has members
    by the end of the retry window.
    """

    def __init__(self, target: Optional[str], count: int, expected: int, timeout: float):
        super().__init__(f"{expected} instance manager upgrades", timeout, target, count)
        self.count = count
        self.expected = expected
