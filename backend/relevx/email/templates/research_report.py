"""HTML email template for research reports."""

from __future__ import annotations

import html
import re

from relevx.config import settings
from relevx.models.project import ResearchProject
from relevx.models.research import CompiledReport

_LINK_RE = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")
_BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")
_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\((https?://[^)\s]+)\)")


def _inline(text: str) -> str:
    """Escape a line, then restore images, links and bold."""
    safe = html.escape(text)
    safe = _IMAGE_RE.sub(
        r'<img src="\2" alt="\1" style="max-width:100%;border-radius:6px;margin:8px 0;">', safe
    )
    safe = _LINK_RE.sub(r'<a href="\2" style="color:#2563eb;text-decoration:none;">\1</a>', safe)
    return _BOLD_RE.sub(r"<strong>\1</strong>", safe)


def markdown_to_html(markdown: str) -> str:
    """Small markdown subset for email bodies: headings, bullets, quotes, paragraphs."""
    blocks: list[str] = []
    bullets: list[str] = []

    def flush_bullets() -> None:
        if bullets:
            blocks.append(
                '<ul style="padding-left:20px;margin:8px 0;">' + "".join(bullets) + "</ul>"
            )
            bullets.clear()

    for raw in markdown.splitlines():
        line = raw.strip()
        if not line:
            flush_bullets()
            continue
        if line.startswith(("- ", "* ")):
            bullets.append(f'<li style="margin:4px 0;">{_inline(line[2:])}</li>')
            continue
        flush_bullets()
        heading = re.match(r"^(#{1,4})\s+(.*)$", line)
        if heading:
            size = {1: 20, 2: 17, 3: 15, 4: 14}[len(heading.group(1))]
            blocks.append(
                f'<h{len(heading.group(1))} style="color:#111827;font-size:{size}px;margin:20px 0 8px;">'
                f"{_inline(heading.group(2))}</h{len(heading.group(1))}>"
            )
        elif line.startswith(">"):
            blocks.append(
                '<blockquote style="border-left:3px solid #93c5fd;margin:8px 0;padding:4px 12px;color:#374151;">'
                f"{_inline(line.lstrip('> '))}</blockquote>"
            )
        else:
            blocks.append(f'<p style="color:#374151;font-size:14px;line-height:1.6;margin:8px 0;">{_inline(line)}</p>')
    flush_bullets()
    return "\n".join(blocks)


def render_report_email(
    report: CompiledReport,
    project: ResearchProject,
    delivery_log_id: str | None = None,
) -> str:
    """Render an HTML email for a research report.

    Uses inline CSS for email client compatibility.
    All report text is HTML-escaped before the markdown subset is applied.
    """
    safe_title = html.escape(report.title)
    safe_project = html.escape(project.title or "Research project")
    safe_summary = html.escape(report.summary) if report.summary else "No summary generated."
    body_html = markdown_to_html(report.markdown)

    dashboard_url = html.escape(settings.dashboard_url.rstrip("/"))
    target = f"{dashboard_url}/projects/{html.escape(project.id)}"
    if delivery_log_id:
        target += f"?report={html.escape(delivery_log_id)}"
    cta_html = (
        f'<div style="text-align:center;margin:24px 0;">'
        f'<a href="{target}" '
        f'style="display:inline-block;padding:10px 28px;'
        f'background:#2563eb;color:#ffffff;border-radius:6px;'
        f'text-decoration:none;font-weight:600;font-size:14px;">'
        f'View Report in Dashboard</a>'
        f'</div>'
    )

    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="margin:0;padding:0;background:#f3f4f6;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;">
<div style="max-width:640px;margin:0 auto;padding:24px;">

  <!-- Header -->
  <div style="background:#ffffff;border:1px solid #e5e7eb;border-radius:8px;padding:24px;margin-bottom:16px;">
    <h1 style="color:#111827;font-size:20px;margin:0 0 4px;">{safe_title}</h1>
    <div style="color:#6b7280;font-size:13px;">{safe_project} · {report.result_count} results · average relevance {report.average_score:.0f}</div>
  </div>

  <!-- Summary -->
  <div style="background:#eff6ff;border:1px solid #bfdbfe;border-radius:8px;padding:16px 24px;margin-bottom:16px;">
    <p style="color:#1e3a8a;font-size:14px;line-height:1.6;margin:0;">{safe_summary}</p>
  </div>

  <!-- Report body -->
  <div style="background:#ffffff;border:1px solid #e5e7eb;border-radius:8px;padding:8px 24px 16px;">
{body_html}
  </div>

  {cta_html}

  <div style="color:#9ca3af;font-size:11px;text-align:center;margin-top:16px;">
    You are receiving this because email delivery is enabled for this research project.
  </div>
</div>
</body>
</html>"""
