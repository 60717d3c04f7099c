"""
Command-line interface: one-shot HTML/PDF conversion or the web server.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from . import __version__
from .config import DEBUG, DEFAULT_PORT, LOG_DIR, TEMPLATE_PATH
from .logging_config import setup_logging
from .rendering import BODY_CLASS_HTML, BODY_CLASS_PDF, build_export_html, load_template

# Let slide animations finish before printing.
CLI_PDF_SETTLE_SECONDS = 2.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mdpresent",
        description="A markdown presentation tool with web and CLI modes.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--md", metavar="PATH", help="Path to the input markdown file (CLI mode)")
    parser.add_argument(
        "--template",
        metavar="PATH",
        default=str(TEMPLATE_PATH),
        help="Path to the HTML template file (CLI mode)",
    )
    parser.add_argument(
        "--output", metavar="PATH", default="output.html", help="Path for the output HTML file (CLI mode)"
    )
    parser.add_argument("--pdf", action="store_true", help="Generate a PDF file from the output (CLI mode)")
    parser.add_argument("--web", action="store_true", help="Run in web server mode")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port for the web server")
    parser.add_argument("--host", default="127.0.0.1", help="Host for the web server")
    parser.add_argument("--debug", action="store_true", default=DEBUG, help="Verbose logging")
    return parser


def pdf_output_path(output: Path) -> Path:
    return output.with_suffix(".pdf") if output.suffix.lower() == ".html" else output


def run_cli(args: argparse.Namespace) -> int:
    md_path = Path(args.md)
    template_path = Path(args.template)
    if not md_path.is_file():
        print(f"Error: Markdown file not found at {md_path}", file=sys.stderr)
        return 1
    if not template_path.is_file():
        print(f"Error: Template file not found at {template_path}", file=sys.stderr)
        return 1

    markdown_text = md_path.read_text(encoding="utf-8")
    template = load_template(template_path)
    output = Path(args.output)

    if args.pdf:
        from .pdf import html_to_pdf

        page = build_export_html(template, markdown_text, BODY_CLASS_PDF, "IS_EXPORTED")
        pdf_path = pdf_output_path(output)
        pdf_bytes = asyncio.run(html_to_pdf(page, settle_seconds=CLI_PDF_SETTLE_SECONDS))
        pdf_path.write_bytes(pdf_bytes)
        print(f"Successfully generated PDF file at: {pdf_path}")
    else:
        page = build_export_html(template, markdown_text, BODY_CLASS_HTML, "IS_EXPORTED")
        output.write_text(page, encoding="utf-8")
        print(f"Successfully generated HTML file at: {output}")
    return 0


def start_server(args: argparse.Namespace) -> int:
    import uvicorn

    from server import app

    print(f"Server started on http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.web:
        setup_logging(LOG_DIR, debug_mode=args.debug)
        return start_server(args)
    if args.md:
        logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING)
        return run_cli(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
