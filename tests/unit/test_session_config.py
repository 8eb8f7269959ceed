"""Unit tests for session id patching of config.js and .env."""

from __future__ import annotations

from xylo_deployer.deployer.session_config import (
    DEFAULT_CONFIG_JS,
    patch_config_js,
    patch_env_file,
)


def test_default_config_gets_session_id() -> None:
    patched = patch_config_js(DEFAULT_CONFIG_JS, "abc123")

    assert patched == 'module.exports = {\n  SESSION_ID: "abc123"\n};'


def test_multiline_getter_fallback_is_replaced() -> None:
    content = (
        "module.exports = {\n"
        "  get SESSION_ID() {\n"
        "    return process.env.SESSION_ID || 'XYLO-MD~old'\n"
        "  },\n"
        "  PREFIX: '.',\n"
        "};\n"
    )

    patched = patch_config_js(content, "XYLO-MD~new")

    assert "get SESSION_ID() { return process.env.SESSION_ID || 'XYLO-MD~new' }," in patched
    assert "old" not in patched
    assert "PREFIX: '.'," in patched


def test_bare_env_fallback_is_replaced() -> None:
    content = 'const session = process.env.SESSION_ID || "old";\nmodule.exports = { session };\n'

    patched = patch_config_js(content, "abc123")

    assert patched == "const session = process.env.SESSION_ID || 'abc123';\nmodule.exports = { session };\n"


def test_legacy_lines_keep_trailing_punctuation() -> None:
    content = "module.exports = {\n  SESSION_ID: 'old',\n  OWNER: 'me',\n};\nSESSION_ID = 'old';\n"

    patched = patch_config_js(content, "abc123")

    assert patched == (
        'module.exports = {\n  SESSION_ID: "abc123",\n  OWNER: \'me\',\n};\nSESSION_ID = "abc123";\n'
    )


def test_config_without_session_id_is_unchanged() -> None:
    content = "module.exports = { PREFIX: '.' };\n"

    assert patch_config_js(content, "abc123") == content


def test_backslashes_are_inserted_literally() -> None:
    patched = patch_config_js(DEFAULT_CONFIG_JS, r"a\1b\g<0>")

    assert r'"a\1b\g<0>"' in patched
    assert patch_env_file("SESSION_ID=old", r"x\1") == r"SESSION_ID=x\1"


def test_env_existing_line_is_replaced() -> None:
    content = "PREFIX=.\nSESSION_ID=old\nOWNER=me\n"

    assert patch_env_file(content, "abc123") == "PREFIX=.\nSESSION_ID=abc123\nOWNER=me\n"


def test_env_line_is_appended() -> None:
    assert patch_env_file("", "abc123") == "SESSION_ID=abc123"
    assert patch_env_file("PREFIX=.", "abc123") == "PREFIX=.\nSESSION_ID=abc123"
    assert patch_env_file("PREFIX=.\n", "abc123") == "PREFIX=.\nSESSION_ID=abc123"
