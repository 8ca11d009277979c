import argparse
import json
import logging
import sys
from pathlib import Path

from .common.config_loader import load_settings
from .engine.rendering import render_plain_text
from .services.answer import process_assistant_response


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Citation resolution debug CLI")
    parser.add_argument(
        "payload",
        help=(
            "JSON file with 'content' and optional 'kb_sources', 'search_results', "
            "'web_results', 'meta_documents', 'analysis' (use '-' for stdin)"
        ),
    )
    parser.add_argument(
        "--plain",
        action="store_true",
        help="Also print the text with bare display numbers ([1], [2,1], [W1])",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every recovered anomaly",
    )
    return parser.parse_args(argv)


def _read_payload(source: str) -> dict:
    if source == "-":
        raw = sys.stdin.read()
    else:
        path = Path(source)
        if not path.exists():
            raise SystemExit(f"Payload file not found: {source}")
        raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as err:
        raise SystemExit(f"Invalid JSON payload: {err}") from err
    if not isinstance(payload, dict):
        raise SystemExit("Payload must be a JSON object")
    return payload


def run(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings()
    payload = _read_payload(args.payload)

    result = process_assistant_response(
        str(payload.get("content") or ""),
        kb_sources=payload.get("kb_sources"),
        search_results=payload.get("search_results"),
        analysis=payload.get("analysis"),
        web_search_results=payload.get("web_results"),
        meta_documents=payload.get("meta_documents"),
        settings=settings,
    )

    output = result.to_dict()
    if args.plain:
        output["plain_text"] = render_plain_text(result)
    if args.verbose:
        output["anomaly_counts"] = dict(result.debug.get("anomaly_counts", {}))

    print(json.dumps(output, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    run()
