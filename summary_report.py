"""
summary_report.py - Batch summary documents for the Lighthouse auditor.

Turns a finished ledger into:
  - a summary record (counts, average scores, one dict per entry)
  - an HTML page with a card per audit  (audit-summary.html)
  - optionally, a PDF version with screenshot thumbnails  (audit-summary.pdf)
"""

import io
import os
from datetime import datetime

from fpdf import FPDF
from jinja2 import Environment
from PIL import Image

from devices import DEVICE_PROFILES

# ────────────────────────────────────────────────────────────────────
# CONFIGURATION
# ────────────────────────────────────────────────────────────────────

SUMMARY_HTML_NAME = "audit-summary.html"
SUMMARY_PDF_NAME = "audit-summary.pdf"

# Screenshot thumbnails embedded in the PDF.
THUMBNAIL_WIDTH = 600
THUMBNAIL_MAX_HEIGHT = 900

# (key in scores, label, css class, PDF fill colour)
SCORE_COLUMNS = [
    ("performance", "Performance", "performance", (33, 150, 243)),
    ("accessibility", "Accessibility", "accessibility", (76, 175, 80)),
    ("bestPractices", "Best Practices", "best-practices", (255, 152, 0)),
    ("seo", "SEO", "seo", (156, 39, 176)),
]


# ────────────────────────────────────────────────────────────────────
# SUMMARY RECORD
# ────────────────────────────────────────────────────────────────────

def _average(values):
    # Half-up, matching how the individual scores are rounded.
    return int(sum(values) / len(values) + 0.5)


def build_summary(ledger, output_dir=None):
    """
    Collect counts and averages for a ledger.

    Entries are listed in ledger order. When `output_dir` is given,
    report/screenshot paths are also offered relative to it (for links
    inside the HTML page that lives there).
    """
    successful = [e for e in ledger if e.ok]
    failed = [e for e in ledger if not e.ok]

    average_scores = None
    if successful:
        average_scores = {
            key: _average([e.outcome.scores[key] for e in successful])
            for key, _, _, _ in SCORE_COLUMNS
        }

    entries = []
    for entry in ledger:
        item = entry.to_dict()
        if entry.ok and output_dir:
            item["report_link"] = _relative(entry.outcome.report_path, output_dir)
            item["screenshot_link"] = _relative(entry.outcome.screenshot_path, output_dir)
        entries.append(item)

    return {
        "generated_at": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        # Each URL produces one entry per device, in a fixed order.
        "urls_tested": len(ledger) // len(DEVICE_PROFILES),
        "total_audits": len(ledger),
        "successful": len(successful),
        "failed": len(failed),
        "average_scores": average_scores,
        "entries": entries,
    }


def _relative(path, output_dir):
    if not path:
        return None
    return os.path.relpath(path, output_dir).replace(os.sep, "/")


# ────────────────────────────────────────────────────────────────────
# HTML
# ────────────────────────────────────────────────────────────────────

SUMMARY_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Lighthouse Audit Summary</title>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 0; padding: 20px; background: #f5f5f5; }
        .container { max-width: 1200px; margin: 0 auto; background: white; border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); overflow: hidden; }
        .header { background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 30px; text-align: center; }
        .header h1 { margin: 0; font-size: 2.2em; }
        .header p { margin: 10px 0 0 0; opacity: 0.9; }
        .content { padding: 30px; }
        .stats { display: grid; grid-template-columns: repeat(auto-fit, minmax(200px, 1fr)); gap: 20px; margin-bottom: 30px; }
        .stat-card { background: #f8f9fa; padding: 20px; border-radius: 8px; text-align: center; border-left: 4px solid #667eea; }
        .stat-number { font-size: 2em; font-weight: bold; color: #667eea; }
        .stat-label { color: #666; margin-top: 5px; }
        .result { border: 1px solid #e9ecef; margin: 15px 0; border-radius: 8px; overflow: hidden; }
        .result-header { padding: 15px 20px; background: #f8f9fa; border-bottom: 1px solid #e9ecef; }
        .result-content { padding: 20px; }
        .success { border-left: 4px solid #28a745; }
        .error { border-left: 4px solid #dc3545; }
        .scores { display: grid; grid-template-columns: repeat(auto-fit, minmax(120px, 1fr)); gap: 10px; margin: 15px 0; }
        .score { padding: 10px; border-radius: 6px; color: white; text-align: center; font-weight: bold; }
        .performance { background: #2196F3; }
        .accessibility { background: #4CAF50; }
        .best-practices { background: #FF9800; }
        .seo { background: #9C27B0; }
        .links a { display: inline-block; margin-right: 15px; color: #667eea; text-decoration: none; padding: 8px 16px; border: 1px solid #667eea; border-radius: 4px; }
        .error-message { color: #dc3545; background: #f8d7da; padding: 10px; border-radius: 4px; border: 1px solid #f5c6cb; }
    </style>
</head>
<body>
<div class="container">
    <div class="header">
        <h1>Lighthouse Audit Summary</h1>
        <p>Generated on {{ summary.generated_at }}</p>
        <p>URLs tested: {{ summary.urls_tested }}</p>
    </div>
    <div class="content">
        <div class="stats">
            <div class="stat-card"><div class="stat-number">{{ summary.urls_tested }}</div><div class="stat-label">URLs Tested</div></div>
            <div class="stat-card"><div class="stat-number">{{ summary.successful }}</div><div class="stat-label">Successful Audits</div></div>
            <div class="stat-card"><div class="stat-number">{{ summary.failed }}</div><div class="stat-label">Failed Audits</div></div>
            <div class="stat-card"><div class="stat-number">{{ summary.average_scores.performance if summary.average_scores else 0 }}</div><div class="stat-label">Avg Performance</div></div>
        </div>
        {% for entry in summary.entries %}
        <div class="result {{ 'error' if entry.error is defined else 'success' }}">
            <div class="result-header">
                <h3>{{ entry.description }} ({{ entry.device }})</h3>
                <p><strong>URL:</strong> <a href="{{ entry.url }}" target="_blank">{{ entry.url }}</a></p>
            </div>
            <div class="result-content">
            {% if entry.error is defined %}
                <div class="error-message"><strong>Error:</strong> {{ entry.error }}</div>
            {% else %}
                <div class="scores">
                {% for key, label, css_class, _ in columns %}
                    <div class="score {{ css_class }}">{{ label }}<br>{{ entry.scores[key] }}</div>
                {% endfor %}
                </div>
                <div class="links">
                    <a href="{{ entry.report_link or entry.report }}" target="_blank">View Report</a>
                    {% if entry.screenshot %}
                    <a href="{{ entry.screenshot_link or entry.screenshot }}" target="_blank">View Screenshot</a>
                    {% else %}
                    <span>No screenshot</span>
                    {% endif %}
                </div>
            {% endif %}
            </div>
        </div>
        {% endfor %}
    </div>
</div>
</body>
</html>
"""

_env = Environment(autoescape=True)


def render_html(summary):
    """Render the summary record as a standalone HTML page."""
    template = _env.from_string(SUMMARY_TEMPLATE)
    return template.render(summary=summary, columns=SCORE_COLUMNS)


# ────────────────────────────────────────────────────────────────────
# PDF
# ────────────────────────────────────────────────────────────────────

def _sanitize_for_pdf(text):
    """Replace Unicode characters that Helvetica can't render."""
    replacements = {
        "\u2014": "--",   # em dash
        "\u2013": "-",    # en dash
        "\u2018": "'",    # left single quote
        "\u2019": "'",    # right single quote
        "\u201c": '"',    # left double quote
        "\u201d": '"',    # right double quote
        "\u2026": "...",  # ellipsis
        "\u00a0": " ",    # non-breaking space
    }
    for char, repl in replacements.items():
        text = text.replace(char, repl)
    return text.encode("latin-1", errors="replace").decode("latin-1")


def make_thumbnail(screenshot_path):
    """
    Shrink a full-page screenshot to a PDF-friendly thumbnail.

    Full-page captures can be tens of thousands of pixels tall, so the
    image is scaled to THUMBNAIL_WIDTH and cropped to the top
    THUMBNAIL_MAX_HEIGHT pixels. Returns an in-memory PNG; nothing is
    written next to the screenshot.
    """
    thumb = io.BytesIO()
    with Image.open(screenshot_path) as img:
        img = img.convert("RGB")
        if img.width > THUMBNAIL_WIDTH:
            height = int(img.height * THUMBNAIL_WIDTH / img.width)
            img = img.resize((THUMBNAIL_WIDTH, max(height, 1)))
        if img.height > THUMBNAIL_MAX_HEIGHT:
            img = img.crop((0, 0, img.width, THUMBNAIL_MAX_HEIGHT))
        img.save(thumb, format="PNG")
    thumb.seek(0)
    return thumb


def render_pdf(summary):
    """Build the PDF bytes for a summary record. Raises on failure."""
    pdf = FPDF()
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()

    # ── Title ──────────────────────────────────────────────────
    pdf.set_font("Helvetica", "B", 22)
    pdf.cell(0, 15, "Lighthouse Audit Summary", ln=True, align="C")
    pdf.set_font("Helvetica", "", 11)
    pdf.set_text_color(100, 100, 100)
    pdf.cell(0, 8, f"Generated on: {summary['generated_at']}", ln=True, align="C")
    pdf.set_text_color(0, 0, 0)
    pdf.ln(5)

    # ── Totals ─────────────────────────────────────────────────
    pdf.set_font("Helvetica", "B", 14)
    pdf.cell(0, 10, "Overview", ln=True)
    pdf.set_font("Helvetica", "", 11)
    pdf.cell(0, 7, f"URLs tested: {summary['urls_tested']}", ln=True)
    pdf.cell(0, 7, f"Successful audits: {summary['successful']}", ln=True)
    pdf.cell(0, 7, f"Failed audits: {summary['failed']}", ln=True)
    averages = summary["average_scores"]
    if averages:
        pdf.cell(0, 7, "Average scores: " + ", ".join(
            f"{label} {averages[key]}" for key, label, _, _ in SCORE_COLUMNS
        ), ln=True)
    pdf.ln(5)

    # ── One block per audit ────────────────────────────────────
    for entry in summary["entries"]:
        pdf.set_x(pdf.l_margin)
        pdf.set_font("Helvetica", "B", 12)
        pdf.cell(0, 9, _sanitize_for_pdf(f"{entry['description']} ({entry['device']})"), ln=True)
        pdf.set_font("Helvetica", "", 9)
        pdf.set_text_color(100, 100, 100)
        pdf.cell(0, 6, _sanitize_for_pdf(entry["url"][:110]), ln=True)
        pdf.set_text_color(0, 0, 0)

        if "error" in entry:
            pdf.set_fill_color(248, 215, 218)
            pdf.set_x(pdf.l_margin)
            pdf.multi_cell(0, 6, _sanitize_for_pdf(f"Error: {entry['error'][:300]}"), fill=True)
            pdf.ln(4)
            continue

        pdf.set_font("Helvetica", "B", 9)
        pdf.set_text_color(255, 255, 255)
        for _, label, _, color in SCORE_COLUMNS:
            pdf.set_fill_color(*color)
            pdf.cell(45, 8, label, border=1, fill=True, align="C")
        pdf.ln()
        pdf.set_text_color(0, 0, 0)
        pdf.set_font("Helvetica", "", 11)
        for key, _, _, _ in SCORE_COLUMNS:
            pdf.cell(45, 8, str(entry["scores"][key]), border=1, align="C")
        pdf.ln(10)

        screenshot = entry.get("screenshot")
        if screenshot and os.path.exists(screenshot):
            try:
                pdf.image(make_thumbnail(screenshot), x=10, w=90)
            except Exception:
                pdf.set_font("Helvetica", "", 10)
                pdf.cell(0, 8, "(Screenshot could not be embedded)", ln=True)
            pdf.ln(4)

    return bytes(pdf.output())


# ────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ────────────────────────────────────────────────────────────────────

def write_summary(ledger, output_dir, pdf=False):
    """
    Write audit-summary.html (and audit-summary.pdf) into `output_dir`.

    Returns:
        (summary record, list of written paths)
    """
    summary = build_summary(ledger, output_dir)
    paths = []

    html_path = os.path.join(output_dir, SUMMARY_HTML_NAME)
    with open(html_path, "w", encoding="utf-8") as f:
        f.write(render_html(summary))
    print(f"[*] HTML summary saved to: {html_path}")
    paths.append(html_path)

    if pdf:
        pdf_path = os.path.join(output_dir, SUMMARY_PDF_NAME)
        with open(pdf_path, "wb") as f:
            f.write(render_pdf(summary))
        print(f"[*] PDF summary saved to: {pdf_path}")
        paths.append(pdf_path)

    return summary, paths
