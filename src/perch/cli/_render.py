"""``perch render`` — render one URL and print the response."""

import argparse
import sys

import anyio

from perch.cli._routes import _load


def _write(body: str | bytes) -> None:
    if isinstance(body, bytes):
        sys.stdout.flush()
        sys.stdout.buffer.write(body)
        sys.stdout.buffer.flush()
    else:
        sys.stdout.write(body)


def run_render(args: argparse.Namespace) -> None:
    """Render ``args.url`` and write the body to stdout.

    Status, metadata and redirects go to stderr so the body can be piped.
    Handler bodies are written as-is, bytes included.
    """
    app = _load(args.app)

    async def main() -> None:
        if args.stream:

            async def write(chunk: str | bytes) -> None:
                _write(chunk)
                _write("\n")

            response = await app.stream(args.url, write)
        else:
            response = await app.handle(args.url)
            _write(response.body)
        print(f"status: {response.status}", file=sys.stderr)
        if response.location:
            print(f"location: {response.location}", file=sys.stderr)
        if response.metadata.title:
            print(f"title: {response.metadata.title}", file=sys.stderr)

    anyio.run(main)
