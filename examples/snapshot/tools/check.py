"""check.py BINARY NEEDLE [--report OUT] : fail unless NEEDLE is in BINARY."""
import sys

binary, needle = sys.argv[1], sys.argv[2]
with open(binary) as f:
    text = f.read()

if needle not in text:
    print(f"{needle!r} not found in {binary}", file=sys.stderr)
    sys.exit(1)

if "--report" in sys.argv:
    with open(sys.argv[sys.argv.index("--report") + 1], "w") as f:
        f.write(f"{binary}: {len(text)} bytes\n")
