from __future__ import annotations
from flask import Flask, request, render_template
from flask import Response, send_file
import json, time, io

from .core.report import make_report_html, write_pdf
from .core.rules import build_registry, scan_source
from .core.source import split_lines

app = Flask(__name__, template_folder="templates")

SAMPLE = """module 0x1::vault {
    use std::signer;
    use aptos_framework::coin;

    struct Vault has key { balance: u64, owner: address }

    public entry fun withdraw(account: &signer, amount: u64) acquires Vault {
        let addr = signer::address_of(account);
        coin::transfer<AptosCoin>(account, addr, amount);
        let vault = borrow_global_mut<Vault>(addr);
        vault.balance = vault.balance - amount;
    }

    public entry fun deposit(account: &signer, amount: u64) acquires Vault {
        let vault = borrow_global_mut<Vault>(signer::address_of(account));
        let total = vault.balance + amount;
        vault.balance = total;
    }
}
"""

@app.get("/")
def index():
    return render_template("editor.html", sample=SAMPLE)

@app.post("/analyze")
def analyze():
    code = request.form.get("code") or ""
    registry = build_registry(include_experimental=bool(request.form.get("experimental")))

    t0 = time.perf_counter()
    findings = scan_source(code, path="<input>", registry=registry)
    elapsed_ms = int((time.perf_counter() - t0) * 1000)

    metrics = {
        "files": 1,
        "loc": len(split_lines(code)),
        "detectors": len(registry),
        "issues": len(findings),
        "analysis_ms": elapsed_ms,
    }
    return make_report_html(findings, target="<input>", source=code, metrics=metrics)

# ---------- Export endpoints ----------

@app.post("/export/json")
def export_json():
    data = request.form.get("data") or "{}"
    try:
        json.loads(data)
    except ValueError:
        data = json.dumps({"error": "invalid JSON payload"})
    return Response(
        data,
        mimetype="application/json",
        headers={"Content-Disposition": "attachment; filename=msvd-report.json"}
    )

@app.post("/export/pdf")
def export_pdf():
    data = request.form.get("data") or "{}"
    try:
        payload = json.loads(data)
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    metrics = payload.get("metrics")
    if not isinstance(metrics, dict):
        metrics = {}
    findings = payload.get("findings")
    if not isinstance(findings, list):
        findings = []

    buf = io.BytesIO()
    try:
        write_pdf(buf, str(payload.get("target", "<input>")), metrics, findings)
    except SystemExit as e:
        # reportlab missing on the server
        return Response(f"{e}\n", mimetype="text/plain", status=501)
    buf.seek(0)
    return send_file(buf, mimetype="application/pdf", as_attachment=True, download_name="msvd-report.pdf")

if __name__ == "__main__":
    app.run(debug=False)
