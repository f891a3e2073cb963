# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

import random
import string


def random_string(len: int) -> str:
    return ''.join(random.choices(string.ascii_lowercase + string.digits, k=len))


def version_to_int(version: str) -> int:
    # x.y.z
    parts = version.split(".")
    if len(parts) != 3:
        raise ValueError(
            f"Invalid version number {version}. Must be n.n.n")

    major, minor, patch = [int(p) for p in parts]
    return major * 1000000 + minor * 1000 + patch
