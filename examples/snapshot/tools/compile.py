"""compile.py OUT SRC... : concatenate sources into a fake object file."""
import os
import sys

out, srcs = sys.argv[1], sys.argv[2:]
config = os.environ.get("ACTIONGRAPH_CONFIG", "?")
variant = os.environ.get("ACTIONGRAPH_VARIANT", "")

with open(out, "w") as f:
    f.write(f"# compiled for {config} {variant}\n")
    for src in srcs:
        with open(src) as s:
            f.write(s.read())
