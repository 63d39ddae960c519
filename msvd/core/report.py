from __future__ import annotations
from typing import Dict, Any, Iterable, List, Set
from pathlib import Path
import re, json
from markupsafe import escape

from .source import split_lines
from .utils import Finding, FindingSet, Severity, UnsupportedFormatError

TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "templates" / "report.html"

VERSION = "0.1.0"
FORMATS = ("text", "json", "html")

IMPACT = (
    "This vulnerability could result in significant financial loss or unauthorized "
    "access to critical functions."
)

BANNER = (
    "╔════════════════════════════════════════════════════════════╗\n"
    "║                        msvd v" + VERSION + "                         ║\n"
    "╚════════════════════════════════════════════════════════════╝\n"
)

_RESET = "\x1b[0m"
_SEVERITY_COLOR = {
    Severity.CRITICAL: "\x1b[31m",
    Severity.HIGH: "\x1b[31m",
    Severity.MEDIUM: "\x1b[33m",
    Severity.LOW: "\x1b[32m",
    Severity.INFO: "\x1b[37m",
}

_SEPARATOR = "-" * 80


def _as_set(findings: Iterable[Finding]) -> FindingSet:
    if isinstance(findings, FindingSet):
        return findings
    return FindingSet(issues=list(findings))

# ---------- Text ----------

def format_text(findings: Iterable[Finding], color: bool = True) -> str:
    fset = _as_set(findings)
    out: List[str] = [BANNER]
    for title, group in fset.grouped().items():
        sev = group[0].severity
        head = f"[{sev.value}] {title}"
        if color:
            head = f"{_SEVERITY_COLOR[sev]}{head}{_RESET}"
        out.append(head)
        out.append("")
        out.append("Affected Lines:")
        for it in group:
            out.append(f"  • file://{it.location.file}:{it.location.line}")
        out.append("")
        out.append(f"Description: {group[0].description}")
        out.append(f"Impact: {IMPACT}")
        out.append(f"Recommendation: {group[0].recommendation}")
        out.append("")
        out.append(_SEPARATOR)
        out.append("")
    out.append(f"Summary: {len(fset)} vulnerabilities found")
    return "\n".join(out) + "\n"

# ---------- JSON ----------

def format_json(findings: Iterable[Finding]) -> str:
    return json.dumps([it.to_dict() for it in findings], indent=2, ensure_ascii=False)


def findings_to_json(target: str, metrics: Dict[str, Any], findings: Iterable[Finding]) -> Dict[str, Any]:
    return {
        "target": target,
        "metrics": metrics,
        "findings": [it.to_dict() for it in findings],
    }

# ---------- Dispatch ----------

def format_findings(findings: Iterable[Finding], fmt: str = "text", color: bool = True,
                    target: str | None = None, source: str | None = None) -> str:
    if fmt == "text":
        return format_text(findings, color=color)
    if fmt == "json":
        return format_json(findings)
    if fmt == "html":
        return make_report_html(findings, target=target or "<input>", source=source)
    raise UnsupportedFormatError(
        f"Unsupported output format: {fmt!r} (expected one of: {', '.join(FORMATS)})"
    )

# ---------- HTML ----------

def _sev_badge_class(sev: Severity) -> str:
    if sev in (Severity.CRITICAL, Severity.HIGH): return "sev-high"
    if sev is Severity.MEDIUM: return "sev-med"
    if sev is Severity.LOW: return "sev-low"
    return "sev-info"


def _render_code_with_lines(source: str, flagged: Set[int]) -> str:
    out: List[str] = []
    for i, line in enumerate(split_lines(source), start=1):
        cls = "line flagged" if i in flagged else "line"
        out.append(
            f"<div class='{cls}' id='L{i}'>"
            f"<span class='ln'>{i:>4}</span>"
            f"<span class='lc'>{escape(line)}</span>"
            f"</div>"
        )
    return "\n".join(out)


def _build_rows(fset: FindingSet) -> str:
    rows: List[str] = []
    for it in fset.by_severity():
        loc = it.location
        rows.append(f"""
<tr data-line="{loc.line}" data-sev="{escape(it.severity.value)}">
  <td><span class="badge {_sev_badge_class(it.severity)}">{escape(it.severity.value)}</span></td>
  <td>{escape(it.title)}</td>
  <td class="loc">{escape(loc.file)}:{loc.line}</td>
  <td>{escape(it.recommendation)}</td>
</tr>""")
    if not rows:
        return "<tr><td colspan='4' class='empty'>No issues found</td></tr>"
    return "\n".join(rows)


def _set_counter(html: str, label_text: str, value: int) -> str:
    pattern = re.compile(
        rf"(<div[^>]*class=\"[^\"]*label[^\"]*\"[^>]*>\s*{re.escape(label_text)}\s*</div>\s*"
        rf"<div[^>]*class=\"[^\"]*value[^\"]*\"[^>]*data-counter=\")(\d+)(\"[^>]*>)([^<]*)(</div>)",
        re.I | re.S
    )
    def repl(m): return f"{m.group(1)}{value}{m.group(3)}{value}{m.group(5)}"
    return pattern.sub(repl, html, count=1)


def make_report_html(
    findings: Iterable[Finding],
    target: str = "<input>",
    source: str | None = None,
    metrics: Dict[str, Any] | None = None,
) -> str:
    fset = _as_set(findings)
    if not TEMPLATE_PATH.exists():
        body = escape("report.html not found at " + str(TEMPLATE_PATH))
        return f"<!doctype html><html><body>{body}</body></html>"

    html = TEMPLATE_PATH.read_text(encoding="utf-8")
    html = html.replace("{{ target }}", str(escape(target)))

    html = re.sub(
        r'(<tbody\s+id=["\']tbody["\']\s*>)(.*?)(</tbody>)',
        lambda m: m.group(1) + _build_rows(fset) + m.group(3),
        html,
        flags=re.S | re.I
    )

    if source is not None:
        code_html = _render_code_with_lines(source, fset.lines())
        html = re.sub(
            r'(<pre\s+id=["\']code["\'][^>]*>)(.*?)(</pre>)',
            lambda m: m.group(1) + code_html + m.group(3),
            html,
            flags=re.S | re.I
        )

    counts = fset.severity_counts()
    html = _set_counter(html, "Issues", len(fset))
    for sev in (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW):
        html = _set_counter(html, sev.value, counts[sev.value])
    if metrics and "loc" in metrics:
        html = _set_counter(html, "LOC", int(metrics["loc"]))

    html = html.replace(
        "</body>",
        f'<script id="findings-json" type="application/json">{_script_safe(format_json(fset))}</script>\n</body>'
    )
    return html


def _script_safe(txt: str) -> str:
    return txt.replace("</", "<\\/")

# ---------- PDF ----------

def write_pdf(pdf_path, target: str, metrics: Dict[str, Any], findings: Iterable[Dict[str, Any]]) -> None:
    """
    Summary PDF. `findings` are export dicts (Finding.to_dict()), so the web UI
    can render a payload posted back by the browser.
    """
    try:
        from reportlab.lib.pagesizes import A4
        from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
        from reportlab.lib.styles import getSampleStyleSheet
        from reportlab.lib import colors
    except ImportError as e:
        raise SystemExit(
            "PDF export requires 'reportlab'. Install it with:\n"
            "  pip install reportlab\n"
            f"(import error: {e})"
        )

    styles = getSampleStyleSheet()
    doc = SimpleDocTemplate(pdf_path, pagesize=A4)
    flow = []
    flow.append(Paragraph(f"Move Static Vulnerability Detector — {escape(target)}", styles["Title"]))
    flow.append(Spacer(1, 8))

    mrows = [["Metric", "Value"]]
    for k in ("files", "loc", "detectors", "issues", "analysis_ms"):
        mrows.append([k, str((metrics or {}).get(k, "—"))])
    t = Table(mrows, hAlign="LEFT")
    t.setStyle(TableStyle([("GRID", (0,0), (-1,-1), 0.25, colors.grey)]))
    flow.append(t)
    flow.append(Spacer(1, 12))

    frows = [["Severity", "Title", "File", "Line"]]
    for it in findings:
        if not isinstance(it, dict):
            continue
        loc = it.get("location", {}) or {}
        frows.append([it.get("severity", ""), it.get("title", ""), loc.get("file", ""), str(loc.get("line", ""))])
    if len(frows) == 1:
        flow.append(Paragraph("No issues found.", styles["Normal"]))
    else:
        tf = Table(frows, hAlign="LEFT", colWidths=[60, 200, 180, 40])
        tf.setStyle(TableStyle([
            ("GRID", (0,0), (-1,-1), 0.25, colors.grey),
            ("BACKGROUND", (0,0), (-1,0), colors.lightgrey)
        ]))
        flow.append(tf)

    doc.build(flow)
