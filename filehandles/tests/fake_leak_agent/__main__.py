import sys

from . import KNOWN_OPTIONS, marker_for


def main(argv):
    if not argv:
        print("usage: fake_leak_agent <pid> [options]", file=sys.stderr)
        return 2
    pid = int(argv[0])
    options = argv[1] if len(argv) > 1 else ""

    print(f"Connecting to pid {pid}")
    for opt in filter(None, options.split(",")):
        if opt.split("=", 1)[0] not in KNOWN_OPTIONS:
            print(f"Unknown option: {opt}", file=sys.stderr)
            print("Agent failed to start!", file=sys.stderr)
            return 1

    marker = marker_for(pid)
    marker.parent.mkdir(parents=True, exist_ok=True)
    marker.write_text(options)
    print(f"Agent installed into pid {pid}")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
