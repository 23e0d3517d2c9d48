import os

import pytest
from helpers import save_font

from fontnames import FontDatabase, scan_dir


@pytest.fixture
def font_dir(tmp_path):
    save_font(tmp_path / "c.otf", family="Gamma")
    save_font(tmp_path / "A.ttf", family="Alpha")
    save_font(tmp_path / "b.TTF", family="Beta")
    (tmp_path / "notes.txt").write_text("not a font")
    return tmp_path


def test_scan_dir_follows_extension_order(font_dir):
    database = scan_dir(font_dir, FontDatabase.new())

    assert [r.filename for r in database.mappings] == ["c.otf", "A.ttf", "b.TTF"]
    assert database.families == {"Gamma": [1], "Alpha": [2], "Beta": [3]}


def test_scan_dir_unmanaged_keeps_full_paths(font_dir):
    database = scan_dir(font_dir, FontDatabase.new(), managed_tree=False)

    assert [r.filename for r in database.mappings] == [
        str(font_dir / "c.otf"),
        str(font_dir / "A.ttf"),
        str(font_dir / "b.TTF"),
    ]


def test_scan_dir_twice_adds_nothing(font_dir):
    database = scan_dir(font_dir, FontDatabase.new())

    scan_dir(font_dir, database)

    assert len(database.mappings) == 3
    assert len(database.checksums) == 3


def test_scan_dir_survives_dangling_symlink(tmp_path):
    save_font(tmp_path / "real.otf", family="Real")
    os.symlink(tmp_path / "gone.otf", tmp_path / "dangling.otf")

    database = scan_dir(tmp_path, FontDatabase.new())

    assert [r.filename for r in database.mappings] == ["real.otf"]


def test_scan_dir_recursive(tmp_path):
    save_font(tmp_path / "top.otf", family="Top")
    save_font(tmp_path / "sub" / "deep.otf", family="Deep")

    flat = scan_dir(tmp_path, FontDatabase.new())
    deep = scan_dir(tmp_path, FontDatabase.new(), recursive=True)

    assert list(flat.families) == ["Top"]
    assert set(deep.families) == {"Top", "Deep"}


def test_scan_dir_missing_directory(tmp_path):
    database = scan_dir(tmp_path / "nowhere", FontDatabase.new())

    assert database == FontDatabase.new()


def test_scan_dir_escapes_glob_characters(tmp_path):
    odd = tmp_path / "fonts [extra]"
    save_font(odd / "x.otf", family="Bracketed")

    database = scan_dir(odd, FontDatabase.new())

    assert list(database.families) == ["Bracketed"]
