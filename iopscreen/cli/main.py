from __future__ import annotations

import argparse

from iopscreen._version import __version__


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="iopscreen",
        description="On-device IOP fundus screening command-line interface.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.parse_args()


if __name__ == "__main__":
    main()
