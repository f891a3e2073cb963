# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

import sys
import importlib

entrypoints = {
    "run": ".run_main",
}


def main():
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd in entrypoints:
        mod = importlib.import_module(entrypoints[cmd], "pgupgradecheck")
        # don't pass the name of the module, thus [2:] instead of [1:]
        return mod.main(sys.argv[2:])  # type: ignore
    elif cmd == "pytest":
        import pytest
        return pytest.main(sys.argv[2:])
    else:
        print("Invalid args:", sys.argv)
        print(f"Usage: {sys.argv[0]} run|pytest [options]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
