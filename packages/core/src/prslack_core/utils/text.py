from __future__ import annotations


def _collect(node, parts: list[str]) -> None:
    if isinstance(node, str):
        parts.append(node)
        return
    if not isinstance(node, dict):
        return
    text = node.get("text")
    if isinstance(text, str):
        parts.append(text)
    elif isinstance(text, dict):
        _collect(text, parts)
    # rich_text link elements keep the target outside "text".
    url = node.get("url")
    if isinstance(url, str):
        parts.append(url)
    for f in node.get("fields") or []:
        _collect(f, parts)
    # Context blocks and rich_text sections nest their text under "elements".
    for el in node.get("elements") or []:
        _collect(el, parts)


def extract_text_from_blocks(blocks) -> str:
    """Flatten the visible text of Block Kit structures into newline-joined lines."""
    if not isinstance(blocks, list):
        return ""
    parts: list[str] = []
    for block in blocks:
        _collect(block, parts)
    return "\n".join(p for p in parts if p)


def message_text(message: dict) -> str:
    """Searchable text of a Slack message: plain ``text`` plus anything in its blocks."""
    base = message.get("text") or ""
    blocks = extract_text_from_blocks(message.get("blocks"))
    return "\n".join(p for p in (base, blocks) if p)
