from pathlib import Path
from types import SimpleNamespace

from fontTools.fontBuilder import FontBuilder
from fontTools.pens.ttGlyphPen import TTGlyphPen
from fontTools.ttLib import TTFont
from fontTools.ttLib.ttCollection import TTCollection


def _square_glyph():
    pen = TTGlyphPen(None)
    pen.moveTo((100, 0))
    pen.lineTo((100, 700))
    pen.lineTo((500, 700))
    pen.lineTo((500, 0))
    pen.closePath()
    return pen.glyph()


def build_font(
    *,
    family: str | dict | None = "Test Family",
    style: str | dict | None = "Regular",
    full_name: str | dict | None = None,
    ps_name: str | None = None,
    typographic_family: str | dict | None = None,
    typographic_subfamily: str | dict | None = None,
    compatible_full_name: str | dict | None = None,
    weight: int = 400,
    width: int = 5,
    italic_angle: float = 0,
) -> TTFont:
    """
    Factory helper for a minimal TrueType font.

    Name values may be a plain string (English) or a dict keyed by
    language tag, as accepted by FontBuilder.setupNameTable().
    """
    fb = FontBuilder(1000, isTTF=True)
    fb.setupGlyphOrder([".notdef", "A"])
    fb.setupCharacterMap({0x41: "A"})
    fb.setupGlyf({".notdef": _square_glyph(), "A": _square_glyph()})
    fb.setupHorizontalMetrics({".notdef": (600, 0), "A": (600, 100)})
    fb.setupHorizontalHeader(ascent=800, descent=-200)

    names = {
        "familyName": family,
        "styleName": style,
        "fullName": full_name,
        "psName": ps_name,
        "typographicFamily": typographic_family,
        "typographicSubfamily": typographic_subfamily,
        "compatibleFullName": compatible_full_name,
    }
    fb.setupNameTable(
        {key: value for key, value in names.items() if value is not None},
        mac=False,
    )
    fb.setupOS2(usWeightClass=weight, usWidthClass=width)
    fb.setupPost(italicAngle=italic_angle)
    return fb.font


def save_font(path: Path, **kwargs) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    build_font(**kwargs).save(str(path))
    return path


def save_collection(path: Path, faces: list[dict]) -> Path:
    """Write a TrueType collection with one face per kwargs dict."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    collection = TTCollection()
    collection.fonts = [build_font(**face) for face in faces]
    collection.save(str(path))
    return path


def make_fc_list_output(lines: list[str], returncode: int = 0, stderr: str = ""):
    """
    Factory helper for mocking fc-list output.

    Returns an object compatible with the result of run_command().
    """
    return SimpleNamespace(
        stdout="\n".join(lines), returncode=returncode, stderr=stderr
    )


class RecordingExtractor:
    """Wraps an extractor and remembers which files were parsed."""

    def __init__(self, extractor):
        self._extractor = extractor
        self.extracted: list[str] = []

    def probe_face_count(self, path):
        return self._extractor.probe_face_count(path)

    def extract(self, path, face_index=None):
        self.extracted.append(str(path))
        return self._extractor.extract(path, face_index)
