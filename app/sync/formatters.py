"""
Text conversion between Slack mrkdwn and Zendesk HTML comments.
"""

import re
from typing import Iterable, Optional

EMPTY_MESSAGE_HTML = "<i>(Empty message)</i>"

_BLOCK_TAG_LINE = re.compile(
    r"^(?!<li>|</li>|<ol>|</ol>|<ul>|</ul>|<pre>|</pre>|<blockquote>|</blockquote>).*$",
    re.MULTILINE,
)


def _escape_curly_braces(code: str) -> str:
    # Zendesk renders comments through Liquid; {{ }} inside code would be evaluated
    return re.sub(r"{{(.*?)}}", r"&lcub;&lcub;\1&rcub;&rcub;", code)


def slack_markdown_to_html(markdown: Optional[str]) -> str:
    """
    Convert Slack mrkdwn into the HTML subset Zendesk accepts for html_body.

    Returns an empty string for empty input; callers substitute
    EMPTY_MESSAGE_HTML.
    """
    if not markdown:
        return ""

    html = re.sub(r"^>\s?(.*)", r"<blockquote>\1</blockquote>", markdown, flags=re.M)

    # Code blocks first so nothing inside them gets formatted
    html = re.sub(
        r"```(.*?)```",
        lambda m: f"<pre><code>{_escape_curly_braces(m.group(1))}</code></pre>",
        html,
        flags=re.S,
    )

    html = re.sub(r"^\d+\.\s(.*)", r"<li>\1</li>", html, flags=re.M)
    html = re.sub(r"(<li>.*</li>)", r"<ol>\1</ol>", html, flags=re.S)

    html = re.sub(r"^[*+\-]\s(.*)", r"<li>\1</li>", html, flags=re.M)
    html = re.sub(r"(?<!<ol>)(<li>.*</li>)(?!</ol>)", r"<ul>\1</ul>", html, flags=re.S)

    html = re.sub(
        r"`(.*?)`",
        lambda m: f"<code>{_escape_curly_braces(m.group(1))}</code>",
        html,
    )

    html = re.sub(r"\*(.*?)\*", r"<strong>\1</strong>", html)
    html = re.sub(r"_(.*?)_", r"<em>\1</em>", html)
    html = re.sub(r"~(.*?)~", r"<del>\1</del>", html)

    html = _BLOCK_TAG_LINE.sub(lambda m: f"{m.group(0)}<br>", html)

    return html


def message_html(text: Optional[str]) -> str:
    return slack_markdown_to_html(text) or EMPTY_MESSAGE_HTML


def slack_permalink(domain: Optional[str], channel_id: str, ts: str) -> str:
    return f"https://{domain}.slack.com/archives/{channel_id}/p{ts.replace('.', '')}"


def html_permalink(domain: Optional[str], channel_id: str, ts: str) -> str:
    url = slack_permalink(domain, channel_id, ts)
    return f'<p><i>(<a href="{url}">View in Slack</a>)</i></p>'


def attachment_links_html(files: Iterable[dict]) -> str:
    """Fallback when files could not be uploaded to Zendesk: link to them in Slack."""
    links = [
        f'<li><a href="{f.get("permalink") or f.get("url_private")}">{f.get("name") or f.get("title") or "file"}</a></li>'
        for f in files
        if f.get("permalink") or f.get("url_private")
    ]
    if not links:
        return ""
    return "<p><strong>Attachments</strong></p><ul>" + "".join(links) + "</ul>"


def strip_signature(message: Optional[str], signature: Optional[str]) -> str:
    """Drop the agent's Zendesk signature when it trails the comment."""
    if not message:
        return ""
    if not signature or not message.endswith(signature):
        return message
    return message[: len(message) - len(signature)]


def zendesk_to_slack_markdown(message: str) -> str:
    return re.sub(r"\*\*(.*?)\*\*", r"*\1*", message)
