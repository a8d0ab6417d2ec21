from __future__ import annotations

import base64
import os
import stat

from safesend.adapters.qr_render import render_ascii, render_data_url
from safesend.adapters.session_store import DirectoryCredentialStore


def test_session_store_roundtrip_with_private_permissions(tmp_path) -> None:
    store = DirectoryCredentialStore(str(tmp_path / "session"))
    assert store.load() is None

    store.save("secret-session")
    assert store.load() == "secret-session"

    path = os.path.join(store.directory, "session.txt")
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert not os.path.exists(f"{path}.tmp")


def test_session_store_clear_removes_directory(tmp_path) -> None:
    store = DirectoryCredentialStore(str(tmp_path / "session"))
    store.save("secret-session")

    store.clear()
    assert not os.path.exists(store.directory)
    assert store.load() is None
    store.clear()


def test_blank_session_file_counts_as_missing(tmp_path) -> None:
    directory = tmp_path / "session"
    directory.mkdir()
    (directory / "session.txt").write_text("  \n", encoding="utf-8")

    assert DirectoryCredentialStore(str(directory)).load() is None


def test_render_data_url_embeds_svg() -> None:
    url = render_data_url("tg://login?token=abc")
    prefix = "data:image/svg+xml;base64,"
    assert url.startswith(prefix)
    svg = base64.b64decode(url[len(prefix) :]).decode("utf-8")
    assert "<svg" in svg


def test_render_ascii_produces_square_block() -> None:
    lines = [line for line in render_ascii("tg://login?token=abc").splitlines() if line]
    assert len(lines) > 10
    assert len(set(len(line) for line in lines)) == 1
