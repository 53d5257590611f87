"""
Text filters between Discord and the game

Pure string helpers used by the messaging service. Mention resolution needs
platform lookups, so those take the lookup as a callable.
"""

import re
from typing import Callable, Optional

FORMAT_CODE_PATTERN = re.compile(r'§[0-9a-gk-or]')
USER_MENTION_PATTERN = re.compile(r'<@!?(\d+)>')
CHANNEL_MENTION_PATTERN = re.compile(r'<#(\d+)>')
OUTBOUND_USER_PATTERN = re.compile(r'@<([^>]+)>')
OUTBOUND_CHANNEL_PATTERN = re.compile(r'#([-a-z]+)', re.IGNORECASE)
NON_LATIN_PATTERN = re.compile(r'[^\u0009-\u024f]')
LINE_BREAK_PATTERN = re.compile(r'[\r\n]{1,2}')

ELLIPSIS = "..."
ESCAPED_LINE_BREAK = "\\n"

Lookup = Callable[[int], Optional[str]]


def strip_format_codes(text: str) -> str:
    """Remove in-game colour and style codes such as ``§6`` or ``§r``"""
    return FORMAT_CODE_PATTERN.sub("", text)


def neutralize_broad_mentions(text: str) -> str:
    return text.replace("@everyone", "everyone").replace("@here", "here")


def filter_basic_latin(text: str) -> str:
    """Drop characters outside tab..Latin Extended-B"""
    return NON_LATIN_PATTERN.sub("", text)


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters plus an ellipsis; 0 disables the limit"""
    if limit > 0 and len(text) > limit:
        return text[:limit] + ELLIPSIS
    return text


def collapse_line_breaks(text: str) -> str:
    """Turn each line break (CR, LF or a pair) into a literal ``\\n`` token"""
    return LINE_BREAK_PATTERN.sub(lambda _: ESCAPED_LINE_BREAK, text)


def replace_mention_codes(text: str, user_name: Lookup, channel_name: Lookup,
                          drop_unresolved: bool = False) -> str:
    """
    Replace ``<@id>`` with a user name and ``<#id>`` with ``#channel``.

    Codes the lookups cannot resolve are kept, or removed when
    ``drop_unresolved`` is set.
    """
    def user_sub(match):
        name = user_name(int(match.group(1)))
        if name is None:
            return "" if drop_unresolved else match.group(0)
        return name

    def channel_sub(match):
        name = channel_name(int(match.group(1)))
        if name is None:
            return "" if drop_unresolved else match.group(0)
        return f"#{name}"

    text = USER_MENTION_PATTERN.sub(user_sub, text)
    return CHANNEL_MENTION_PATTERN.sub(channel_sub, text)


def insert_mentions(text: str, member_mention: Callable[[str], Optional[str]],
                    channel_id: Callable[[str], Optional[int]]) -> str:
    """Turn ``@<name>`` and ``#channel-name`` written in game into Discord mentions"""
    def user_sub(match):
        mention = member_mention(match.group(1))
        return mention if mention is not None else match.group(0)

    def channel_sub(match):
        found = channel_id(match.group(1).lower())
        return f"<#{found}>" if found is not None else match.group(0)

    text = OUTBOUND_USER_PATTERN.sub(user_sub, text)
    return OUTBOUND_CHANNEL_PATTERN.sub(channel_sub, text)


def normalize_inbound(text: str, latin_only: bool = False, char_limit: int = 0) -> str:
    """Character set filter, length limit, then line break collapsing"""
    if latin_only:
        text = filter_basic_latin(text)
    text = truncate(text, char_limit)
    return collapse_line_breaks(text)


def prepare_outbound(text: str) -> str:
    return neutralize_broad_mentions(strip_format_codes(text))
