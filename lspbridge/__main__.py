"""
Command-line probe for the language server bridge.

This file is executed when running: python -m lspbridge

It starts a language server, opens one file through the bridge, waits for the
server's diagnostics and prints them:

    python -m lspbridge app.py -- pyright-langserver --stdio
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from lspbridge.config import ClientOptions, ConfigError, load_config
from lspbridge.lsp.client import LanguageServerClient
from lspbridge.lsp.plugin import EditorDiagnostic, LanguageServerPlugin, PluginOptions
from lspbridge.lsp.rpc import PyglsRpcSession
from lspbridge.utils.positions import offset_to_pos
from lspbridge.utils.text import Text

logger = logging.getLogger("lspbridge")

LANGUAGE_IDS = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".rs": "rust",
    ".go": "go",
    ".php": "php",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".java": "java",
    ".rb": "ruby",
    ".sh": "shellscript",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lspbridge",
        description="Open a file through a language server and print its diagnostics.",
    )
    parser.add_argument("file", help="File to open")
    parser.add_argument(
        "server_command",
        nargs="*",
        help="Language server command, after '--' (overrides the config file)",
    )
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--language-id", help="Language identifier (default: from extension)")
    parser.add_argument(
        "--wait",
        type=float,
        default=5.0,
        help="Seconds to wait for diagnostics (default: 5)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LSPBRIDGE_LOG_LEVEL"),
        help="Logging level (default: WARNING, DEBUG if the DEBUG variable is set)",
    )
    return parser


def guess_language_id(path: Path) -> str:
    return LANGUAGE_IDS.get(path.suffix.lower(), path.suffix.lstrip(".") or "plaintext")


def format_diagnostic(path: Path, doc: Text, diagnostic: EditorDiagnostic) -> str:
    pos = offset_to_pos(doc, diagnostic.from_)
    source = f" [{diagnostic.source}]" if diagnostic.source else ""
    return (
        f"{path}:{pos.line + 1}:{pos.character + 1}: "
        f"{diagnostic.severity}{source} {diagnostic.message}"
    )


async def run(args: argparse.Namespace, options: ClientOptions) -> int:
    path = Path(args.file).resolve()
    command = args.server_command or options.server_command

    rpc = PyglsRpcSession()
    await rpc.start_io(command[0], *command[1:])

    client = LanguageServerClient(
        rpc,
        root_uri=options.root_uri or path.parent.as_uri(),
        workspace_folders=options.workspace_folders,
        timeout=options.timeout,
        initialization_options=options.initialization_options,
        auto_close=True,
    )

    received = asyncio.Event()
    diagnostics: list[EditorDiagnostic] = []

    def on_diagnostics(items: list[EditorDiagnostic]) -> None:
        diagnostics[:] = items
        received.set()

    plugin = LanguageServerPlugin(
        client,
        path.as_uri(),
        args.language_id or guess_language_id(path),
        PluginOptions(
            features=options.features,
            on_diagnostics=on_diagnostics,
            on_error=lambda e: logger.error("%s", e),
        ),
    )

    try:
        await plugin.initialize(Text.of(path.read_text(encoding="utf-8")))
        try:
            await asyncio.wait_for(received.wait(), args.wait)
        except asyncio.TimeoutError:
            logger.info("No diagnostics received within %gs", args.wait)

        for diagnostic in diagnostics:
            print(format_diagnostic(path, plugin.doc, diagnostic))
    finally:
        plugin.destroy()
        await rpc.wait_closed()

    return 1 if any(d.severity == "error" for d in diagnostics) else 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = args.log_level or ("DEBUG" if os.getenv("DEBUG") else "WARNING")
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        options = load_config(args.config) if args.config else ClientOptions()
    except ConfigError as e:
        parser.error(str(e))

    if not (args.server_command or options.server_command):
        parser.error("no language server command given (use '-- CMD...' or server_command)")

    return asyncio.run(run(args, options))


if __name__ == "__main__":
    sys.exit(main())
