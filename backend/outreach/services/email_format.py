"""
Plain-text email body to HTML.
"""
import html
import re
from typing import Optional

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")


def body_to_html(body: Optional[str]) -> str:
    """
    Blank-line separated paragraphs become ``<p>`` blocks and single
    newlines inside a paragraph become ``<br>``. Text is HTML-escaped.
    """
    if not body:
        return ""
    text = body.replace("\r\n", "\n").strip()
    paragraphs = [p.strip() for p in _PARAGRAPH_SPLIT.split(text) if p.strip()]
    return "".join(
        f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in paragraphs
    )


def signature_to_html(signature: Optional[str]) -> str:
    if not signature:
        return ""
    lines = [html.escape(line.strip()) for line in signature.splitlines() if line.strip()]
    if not lines:
        return ""
    return '<br><br><span style="color:#666;font-size:13px">' + "<br>".join(lines) + "</span>"


def render_email_html(body_html: Optional[str], body: Optional[str], signature: Optional[str] = None) -> str:
    """Final HTML sent to the provider: stored HTML (or the body converted on the fly) plus signature."""
    content = body_html or body_to_html(body)
    return content + signature_to_html(signature)
