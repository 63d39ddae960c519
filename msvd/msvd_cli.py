from __future__ import annotations
import argparse, json, logging, pathlib, sys, time
from typing import Any, Dict, List

from .core.report import FORMATS, findings_to_json, format_findings, make_report_html, write_pdf
from .core.rules import ALL_DETECTORS, DEFAULT_DETECTORS, analyze_path, build_registry
from .core.source import list_contract_files, split_lines
from .core.utils import FindingSet, MsvdError

logger = logging.getLogger("msvd")


def _metrics(target: pathlib.Path, findings: FindingSet, registry, elapsed_ms: int) -> Dict[str, Any]:
    if target.is_dir():
        files = list_contract_files(target)
    else:
        files = [target]
    loc = 0
    for p in files:
        loc += len(split_lines(p.read_text(encoding="utf-8", errors="ignore")))
    return {
        "files": len(files),
        "loc": loc,
        "detectors": len(registry),
        "issues": len(findings),
        "analysis_ms": elapsed_ms,
    }


def _list_detectors() -> str:
    rows: List[str] = []
    for d in ALL_DETECTORS:
        state = "default" if d in DEFAULT_DETECTORS else "experimental"
        rows.append(f"{d.key:<28} {d.severity.value:<9} {state:<13} {d.title}")
    return "\n".join(rows)

# ------------------- pipeline -------------------

def run(path: str, fmt: str = "text", include_experimental: bool = False, only: List[str] | None = None,
        color: bool = True, html_out: str | None = None, json_out: str | None = None,
        pdf_out: str | None = None) -> str:
    registry = build_registry(include_experimental=include_experimental, only=only)
    target = pathlib.Path(path)

    t0 = time.perf_counter()
    findings = analyze_path(target, registry)
    elapsed_ms = int((time.perf_counter() - t0) * 1000)

    source = None
    if fmt == "html" or html_out:
        if target.is_file():
            source = target.read_text(encoding="utf-8", errors="ignore")
    output = format_findings(findings, fmt, color=color, target=str(target), source=source)

    if html_out or json_out or pdf_out:
        metrics = _metrics(target, findings, registry, elapsed_ms)
        if html_out:
            html = make_report_html(findings, target=str(target), source=source, metrics=metrics)
            pathlib.Path(html_out).write_text(html, encoding="utf-8")
            print(f"Report written to {html_out}", file=sys.stderr)
        if json_out:
            payload = findings_to_json(str(target), metrics, findings)
            pathlib.Path(json_out).write_text(json.dumps(payload, indent=2), encoding="utf-8")
            print(f"JSON written to {json_out}", file=sys.stderr)
        if pdf_out:
            write_pdf(pdf_out, str(target), metrics, [it.to_dict() for it in findings])
            print(f"PDF written to {pdf_out}", file=sys.stderr)

    return output

# ------------------- CLI -------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="msvd", description="Security scanner for Move smart contracts")
    ap.add_argument("-p", "--path", help="Move source file or directory to analyze")
    ap.add_argument("-f", "--format", dest="fmt", default="text", choices=FORMATS, help="Output format")
    ap.add_argument("--experimental", action="store_true", help="Also run the experimental detectors")
    ap.add_argument("--only", nargs="+", metavar="KEY", default=None, help="Run only these detectors")
    ap.add_argument("--list-detectors", action="store_true", help="List detectors and exit")
    ap.add_argument("--no-color", dest="color", action="store_false", help="Disable ANSI colours in text output")
    ap.add_argument("--html-out", dest="html_out", default=None, help="Also write an HTML report")
    ap.add_argument("--json-out", dest="json_out", default=None, help="Also write findings JSON with metrics")
    ap.add_argument("--pdf-out", dest="pdf_out", default=None, help="Also write a summary PDF")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return ap


def main(argv: List[str] | None = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    if args.list_detectors:
        print(_list_detectors())
        return 0
    if not args.path:
        ap.error("the following arguments are required: -p/--path")

    if args.fmt == "text":
        print(f"Analyzing: {args.path}\n")
    try:
        output = run(args.path, fmt=args.fmt, include_experimental=args.experimental, only=args.only,
                     color=args.color, html_out=args.html_out, json_out=args.json_out, pdf_out=args.pdf_out)
    except MsvdError as e:
        logger.debug("analysis aborted", exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return 1
    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
