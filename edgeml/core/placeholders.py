"""Writable-root placeholder substitution for transfer paths and pipeline templates."""

from typing import Optional

DEFAULT_SENDER_PLACEHOLDER = "@APP_RW_PATH@"
DEFAULT_RECEIVER_PLACEHOLDER = "@REMOTE_APP_RW_PATH@"


def contains_placeholder(template: Optional[str], placeholder: str) -> bool:
    return bool(template) and placeholder in template


def resolve_placeholder(template: str, placeholder: str, root: Optional[str]) -> str:
    """
    Replace the first occurrence of ``placeholder`` with ``root``.

    A template without the placeholder is returned unchanged, so resolving
    an already-resolved template is a no-op. A trailing separator on
    ``root`` is dropped so ``@X@/file`` never yields a doubled slash.
    """
    if not template or not placeholder or placeholder not in template:
        return template
    if root is None:
        return template
    if len(root) > 1:
        root = root.rstrip("/")
    return template.replace(placeholder, root, 1)
