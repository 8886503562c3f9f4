from __future__ import annotations

CONTACT_SUFFIX = "@c.us"
GROUP_SUFFIX = "@g.us"


def is_group(chat_id: str) -> bool:
    return chat_id.endswith(GROUP_SUFFIX)


def ensure_chat_suffix(chat_id: str) -> str:
    """Append `@c.us` unless the id already names a contact or a group."""

    if chat_id.endswith(CONTACT_SUFFIX) or chat_id.endswith(GROUP_SUFFIX):
        return chat_id
    return chat_id + CONTACT_SUFFIX


def ensure_group_suffix(chat_id: str) -> str:
    if chat_id.endswith(GROUP_SUFFIX):
        return chat_id
    return chat_id.replace(CONTACT_SUFFIX, "") + GROUP_SUFFIX
