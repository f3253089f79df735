"""Evaluator used by the Linux baseline example (run with examples/ on PYTHONPATH)."""

MINIMUM = (5, 4)


def minimum_kernel(stdout, stderr, assertion_context):
    version = assertion_context.get("kernel", "")
    try:
        major, minor = (int(part) for part in version.split(".")[:2])
    except ValueError:
        return 0
    return 1 if (major, minor) >= MINIMUM else -1
