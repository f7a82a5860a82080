#!/usr/bin/env python3
"""CLI entry point for citation-verify command.

Verifies citations against Crossref and OpenAlex.
"""

import sys


def main() -> None:
    """Entry point for citation-verify command."""
    from citation_verifier.verifier import main as verifier_main

    sys.exit(verifier_main())


if __name__ == "__main__":
    main()
