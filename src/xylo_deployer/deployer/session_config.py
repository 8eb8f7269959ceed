"""Patch the bot's session identifier into `config.js` and `.env` contents.

The upstream bot ships a hand-written JavaScript config, so the session id is patched
with pattern matching rather than by parsing the file. Formats handled:

- ``get SESSION_ID() { return process.env.SESSION_ID || '<fallback>' }``
- any other ``process.env.SESSION_ID || '<fallback>'`` expression
- legacy ``SESSION_ID: "<value>"`` / ``SESSION_ID = "<value>"`` lines

Anything else is left untouched; the `.env` file still carries the id in that case.
"""

from __future__ import annotations

import re

DEFAULT_CONFIG_JS = "module.exports = {\n  SESSION_ID: 'session id here'\n};"

_GETTER_RE = re.compile(
    r"get SESSION_ID\(\)\s*{\s*return\s+process\.env\.SESSION_ID\s*\|\|\s*['\"`][^'\"`]*['\"`]\s*}"
)
_ENV_FALLBACK_RE = re.compile(r"(process\.env\.SESSION_ID\s*\|\|\s*)['\"`][^'\"`]*['\"`]")
_COLON_VALUE_RE = re.compile(r"(\s*SESSION_ID\s*:\s*).*?([,;]?)\s*$")
_EQUALS_VALUE_RE = re.compile(r"(\s*SESSION_ID\s*=\s*).*?([,;]?)\s*$")
_ENV_LINE_RE = re.compile(r"SESSION_ID\s*=\s*.*")


def patch_config_js(content: str, session_id: str) -> str:
    """Return `content` with every session id fallback replaced by `session_id`."""

    if "process.env.SESSION_ID" in content:
        getter = f"get SESSION_ID() {{ return process.env.SESSION_ID || '{session_id}' }}"
        updated = _GETTER_RE.sub(lambda _m: getter, content)
        if updated == content:
            updated = _ENV_FALLBACK_RE.sub(lambda m: f"{m.group(1)}'{session_id}'", content)
        return updated

    if "SESSION_ID" in content:
        return "\n".join(_patch_legacy_line(line, session_id) for line in content.split("\n"))

    return content


def _patch_legacy_line(line: str, session_id: str) -> str:
    if "SESSION_ID" not in line:
        return line
    if ":" in line:
        return _COLON_VALUE_RE.sub(lambda m: f'{m.group(1)}"{session_id}"{m.group(2)}', line)
    if "=" in line:
        return _EQUALS_VALUE_RE.sub(lambda m: f'{m.group(1)}"{session_id}"{m.group(2)}', line)
    return line


def patch_env_file(content: str, session_id: str) -> str:
    """Set `SESSION_ID=<session_id>` in dotenv content, appending the line if absent."""

    if "SESSION_ID" in content:
        return _ENV_LINE_RE.sub(lambda _m: f"SESSION_ID={session_id}", content)
    separator = "\n" if content and not content.endswith("\n") else ""
    return f"{content}{separator}SESSION_ID={session_id}"
