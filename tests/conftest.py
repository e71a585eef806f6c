"""
Pytest configuration.

The project uses a ``src/`` layout (package code lives in ``src/docs_organiser``).
Normally, developers run tests after installing the package (e.g. ``pip install -e .``).

On some macOS/Python 3.13 setups, editable installs in dot-prefixed virtualenv
folders (like ``.venv``) can result in the generated ``.pth`` file being marked
as hidden, and Python's ``site`` module will skip hidden ``.pth`` files. When
that happens, ``import docs_organiser`` fails even though the source tree is
present.

This file makes tests robust in that scenario by adding ``src/`` to ``sys.path``
only when the package cannot be imported normally.
"""

from __future__ import annotations

import sys
from pathlib import Path


def _ensure_src_on_path() -> None:
    try:
        import docs_organiser  # noqa: F401
        return
    except ModuleNotFoundError:
        pass

    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    sys.path.insert(0, str(src_dir))


_ensure_src_on_path()

import os

import pytest


class CharTokenizer:
    """One token per character; keeps token arithmetic obvious in tests."""

    name = "char"

    def encode(self, text: str) -> list[int]:
        return [ord(ch) for ch in text]

    def decode(self, tokens: list[int]) -> str:
        return "".join(chr(token) for token in tokens)

    def count_tokens(self, text: str) -> int:
        return len(text)


@pytest.fixture
def char_tokenizer():
    return CharTokenizer()


@pytest.fixture
def settings(mocker, tmp_path):
    """Settings pointing at temporary source/destination folders."""
    from docs_organiser.config import Settings

    source = tmp_path / "src"
    dest = tmp_path / "dst"
    source.mkdir()
    dest.mkdir()
    mocker.patch.dict(
        os.environ,
        {
            "DOCS_SRC": str(source),
            "DOCS_DST": str(dest),
            "DOCS_WORKERS": "2",
        },
        clear=True,
    )
    return Settings()


@pytest.fixture
def make_response(mocker):
    """Build a chat completion response object carrying ``content``."""

    def _make(content):
        mock_choice = mocker.MagicMock()
        mock_choice.message.content = content
        mock_response = mocker.MagicMock()
        mock_response.choices = [mock_choice]
        return mock_response

    return _make


@pytest.fixture
def make_pdf():
    """Write a one-page PDF whose text layer holds ``text``."""
    from pypdf import PdfWriter
    from pypdf.generic import DecodedStreamObject, DictionaryObject, NameObject

    def _make(path, text):
        writer = PdfWriter()
        page = writer.add_blank_page(width=400, height=200)
        font = DictionaryObject(
            {
                NameObject("/Type"): NameObject("/Font"),
                NameObject("/Subtype"): NameObject("/Type1"),
                NameObject("/BaseFont"): NameObject("/Helvetica"),
                NameObject("/Encoding"): NameObject("/WinAnsiEncoding"),
            }
        )
        page[NameObject("/Resources")] = DictionaryObject(
            {NameObject("/Font"): DictionaryObject({NameObject("/F1"): font})}
        )
        content = DecodedStreamObject()
        content.set_data(f"BT /F1 12 Tf 20 100 Td ({text}) Tj ET".encode("latin-1"))
        page.replace_contents(content)
        with open(path, "wb") as handle:
            writer.write(handle)
        return path

    return _make
