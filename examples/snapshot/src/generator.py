import sys

with open(sys.argv[1], "w") as f:
    f.write("// generated builtins\n")
    f.write("const char* kBuiltins[] = {\"Array\", \"Object\", \"String\"};\n")
