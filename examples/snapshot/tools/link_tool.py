"""link_tool.py OUT SCRIPT LIB... : produce an executable python tool."""
import os
import stat
import sys

out, script, libs = sys.argv[1], sys.argv[2], sys.argv[3:]

with open(out, "w") as f:
    f.write(f"#!{sys.executable}\n")
    for lib in libs:
        f.write(f"# linked: {os.path.basename(lib)}\n")
    with open(script) as s:
        f.write(s.read())

os.chmod(out, os.stat(out).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
