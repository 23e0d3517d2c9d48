"""Font names database.

Scans font directories and the OS font cache and maintains a database that
maps family, full and PostScript names of every font face to the file that
contains it. The database is updated incrementally: files whose content
checksum is already recorded are not parsed again.
"""

import glob
import logging
import os
import posixpath
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, ClassVar, Iterable, Optional

import imohash
from fontTools.ttLib import TTFont
from fontTools.ttLib.macUtils import getSFNTResIndices
from fontTools.ttLib.sfnt import readTTCHeader

from fontnames_config import IndexConfig, SystemKind

logger = logging.getLogger(__name__)

DATABASE_VERSION = "1.002"

FONT_EXTENSIONS = ("otf", "ttf", "ttc", "dfont")

FC_LIST_COMMAND = ["fc-list", ":", "file"]

# Larger than any font file, so imohash reads the entire content
FULL_HASH_THRESHOLD = 1 << 40

NAME_ID_FAMILY = 1
NAME_ID_SUBFAMILY = 2
NAME_ID_FULLNAME = 4
NAME_ID_POSTSCRIPT = 6
NAME_ID_TYPOGRAPHIC_FAMILY = 16
NAME_ID_TYPOGRAPHIC_SUBFAMILY = 17
NAME_ID_COMPATIBLE_FULL = 18

ProgressCallback = Callable[[int, int], None]

_CYGDRIVE_RE = re.compile(r"^/cygdrive/([a-zA-Z])/")


def normalize_path(path: str, system: SystemKind = SystemKind.UNIX) -> str:
    """Canonicalize a font path so that checksum keys stay stable.

    - ``a\\b\\c`` -> ``a/b/c`` and lower case (windows and cygwin)
    - ``a/../b`` -> ``b``
    - ``/cygdrive/c/b`` -> ``c:/b`` (cygwin)
    """
    if not path:
        return path
    path = str(path)
    if system is not SystemKind.UNIX:
        path = path.replace("\\", "/").lower()
    path = posixpath.normpath(path)
    if system is SystemKind.CYGWIN:
        path = _CYGDRIVE_RE.sub(r"\1:/", path)
    return path


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


@dataclass
class FaceNames:
    """Preferred identifiers of a face, each independently optional."""

    fullname: Optional[str] = None
    family: Optional[str] = None
    subfamily: Optional[str] = None
    psname: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "fullname": self.fullname,
                "family": self.family,
                "subfamily": self.subfamily,
                "psname": self.psname,
            }
        )


@dataclass
class DesignSize:
    """Optical size data from the OpenType ``size`` feature, in decipoints.

    Zero values are never stored: a missing field means the font declares
    nothing for it.
    """

    design_size: Optional[int] = None
    range_top: Optional[int] = None
    range_bottom: Optional[int] = None

    @classmethod
    def from_points(
        cls, design_size, range_top, range_bottom
    ) -> Optional["DesignSize"]:
        size = cls(
            design_size=_decipoints(design_size),
            range_top=_decipoints(range_top),
            range_bottom=_decipoints(range_bottom),
        )
        if size.to_dict():
            return size
        return None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "design_size": self.design_size,
                "range_top": self.range_top,
                "range_bottom": self.range_bottom,
            }
        )


def _decipoints(value) -> Optional[int]:
    if not value:
        return None
    return int(round(value * 10)) or None


@dataclass
class FaceRecord:
    """One font face as stored in the database."""

    fontname: Optional[str] = None
    fullname: Optional[str] = None
    familyname: Optional[str] = None
    filename: Optional[str] = None
    names: FaceNames = field(default_factory=FaceNames)
    weight: Optional[int] = None
    width: Optional[int] = None
    slant: Optional[float] = None
    size: Optional[DesignSize] = None
    index: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        data = _compact(
            {
                "fontname": self.fontname,
                "fullname": self.fullname,
                "familyname": self.familyname,
                "filename": self.filename,
                "weight": self.weight,
                "width": self.width,
                "slant": self.slant,
                "index": self.index,
            }
        )
        data["names"] = self.names.to_dict()
        if self.size is not None:
            data["size"] = self.size.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FaceRecord":
        size = data.get("size")
        return cls(
            fontname=data.get("fontname"),
            fullname=data.get("fullname"),
            familyname=data.get("familyname"),
            filename=data.get("filename"),
            names=FaceNames(**data.get("names", {})),
            weight=data.get("weight"),
            width=data.get("width"),
            slant=data.get("slant"),
            size=DesignSize(**size) if size else None,
            index=data.get("index"),
        )


@dataclass
class FontDatabase:
    """Face records, the family index and the checksum cache.

    ``mappings`` is append-only: the 1-based position of a record is its
    mapping ID, which is what ``families`` refers to.
    """

    version: Optional[str] = DATABASE_VERSION
    mappings: list[FaceRecord] = field(default_factory=list)
    families: dict[str, list[int]] = field(default_factory=dict)
    checksums: dict[str, str] = field(default_factory=dict)

    @classmethod
    def new(cls) -> "FontDatabase":
        return cls(version=DATABASE_VERSION)

    @property
    def is_current(self) -> bool:
        return self.version == DATABASE_VERSION

    def add_face(self, record: FaceRecord) -> int:
        """Append a record and index it by family; return its mapping ID."""
        self.mappings.append(record)
        mapping_id = len(self.mappings)
        family = record.names.family
        if family:
            self.families.setdefault(family, []).append(mapping_id)
        return mapping_id

    def face(self, mapping_id: int) -> FaceRecord:
        if mapping_id < 1:
            raise IndexError(f"Invalid mapping ID: {mapping_id}")
        return self.mappings[mapping_id - 1]

    def lookup(self, name: str) -> list[FaceRecord]:
        """Find faces by family name, or else by full or PostScript name.

        Matching is case-insensitive. Family matches are returned in family
        bucket order, other matches in mapping ID order.
        """
        wanted = name.strip().casefold()
        if not wanted:
            return []
        mapping_ids: list[int] = []
        for family, bucket in self.families.items():
            if family.casefold() == wanted:
                mapping_ids.extend(bucket)
        if not mapping_ids:
            for mapping_id, record in enumerate(self.mappings, start=1):
                candidates = (
                    record.names.fullname,
                    record.names.psname,
                    record.fullname,
                    record.fontname,
                )
                if any(c and c.casefold() == wanted for c in candidates):
                    mapping_ids.append(mapping_id)
        return [self.face(mapping_id) for mapping_id in mapping_ids]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "mappings": [record.to_dict() for record in self.mappings],
            "families": {name: list(ids) for name, ids in self.families.items()},
            "checksums": dict(self.checksums),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FontDatabase":
        return cls(
            version=data.get("version"),
            mappings=[FaceRecord.from_dict(m) for m in data.get("mappings", [])],
            families={
                name: [int(i) for i in ids]
                for name, ids in data.get("families", {}).items()
            },
            checksums=dict(data.get("checksums", {})),
        )


def file_checksum(path: str | Path) -> str:
    """Content fingerprint of a font file (imohash hex digest).

    The whole file is hashed, so any content change yields a new checksum.
    """
    return imohash.hashfile(
        path, sample_threshhold=FULL_HASH_THRESHOLD, hexdigest=True
    )


class FontMetadataExtractor:
    """Extracts face records from font files using fontTools."""

    WINDOWS_PLATFORM: ClassVar[int] = 3
    ENGLISH_US: ClassVar[int] = 0x0409

    def probe_face_count(self, path: str | Path) -> int:
        """Number of faces in the file, 0 if it cannot be read."""
        path = str(path)
        try:
            if path.lower().endswith(".dfont"):
                indices = getSFNTResIndices(path)
                if indices:
                    return len(indices)
            with open(path, "rb") as f:
                if f.read(4) == b"ttcf":
                    f.seek(0)
                    return readTTCHeader(f).numFonts
            return 1
        except Exception as e:
            logger.debug("Cannot probe %s: %s", path, e)
            return 0

    def extract(
        self, path: str | Path, face_index: Optional[int] = None
    ) -> Optional[FaceRecord]:
        """Extract one face, or ``None`` if the font cannot be parsed."""
        try:
            with self._open(str(path), face_index) as font:
                return self._extract_face(font, str(path), face_index)
        except Exception as e:
            logger.debug("Font parsing error in %s: %s", path, e)
            return None

    def _open(self, path: str, face_index: Optional[int]) -> TTFont:
        if path.lower().endswith(".dfont") and getSFNTResIndices(path):
            # sfnt resources are numbered from 1
            return TTFont(path, res_name_or_index=(face_index or 0) + 1, lazy=True)
        font_number = face_index or 0
        return TTFont(path, fontNumber=font_number, lazy=True)

    def _extract_face(
        self, font: TTFont, filename: str, face_index: Optional[int] = None
    ) -> FaceRecord:
        name_table = font["name"] if "name" in font else None
        english = self._english_names(name_table) if name_table is not None else {}
        cff = self._cff_names(font)
        size_params = self._size_params(font)

        style_name = None
        style_name_id = getattr(size_params, "SubfamilyNameID", 0)
        if style_name_id:
            style_name = english.get(style_name_id)

        record = FaceRecord(
            fontname=self._debug_name(name_table, NAME_ID_POSTSCRIPT)
            or cff.get("fontname"),
            fullname=self._debug_name(name_table, NAME_ID_FULLNAME)
            or cff.get("fullname"),
            familyname=self._debug_name(name_table, NAME_ID_FAMILY)
            or cff.get("familyname"),
            filename=filename,
            index=face_index,
        )
        record.names = FaceNames(
            fullname=english.get(NAME_ID_COMPATIBLE_FULL)
            or english.get(NAME_ID_FULLNAME)
            or record.fullname,
            family=english.get(NAME_ID_TYPOGRAPHIC_FAMILY)
            or english.get(NAME_ID_FAMILY)
            or record.familyname,
            subfamily=style_name
            or english.get(NAME_ID_TYPOGRAPHIC_SUBFAMILY)
            or english.get(NAME_ID_SUBFAMILY),
            psname=english.get(NAME_ID_POSTSCRIPT) or record.fontname,
        )

        if "OS/2" in font:
            os2 = font["OS/2"]
            record.weight = getattr(os2, "usWeightClass", None)
            record.width = getattr(os2, "usWidthClass", None)
        if "post" in font:
            record.slant = getattr(font["post"], "italicAngle", None)

        if size_params is not None:
            record.size = DesignSize.from_points(
                getattr(size_params, "DesignSize", 0),
                getattr(size_params, "RangeEnd", 0),
                getattr(size_params, "RangeStart", 0),
            )
        return record

    def _english_names(self, name_table) -> dict[int, str]:
        """Windows English (US) name records keyed by nameID."""
        names: dict[int, str] = {}
        for record in name_table.names:
            if record.platformID != self.WINDOWS_PLATFORM:
                continue
            if record.langID != self.ENGLISH_US:
                continue
            text = self._get_decoded_string(record)
            if text:
                names.setdefault(record.nameID, text)
        return names

    def _debug_name(self, name_table, name_id: int) -> Optional[str]:
        if name_table is None:
            return None
        text = name_table.getDebugName(name_id)
        return text.strip() if text and text.strip() else None

    def _get_decoded_string(self, record) -> Optional[str]:
        try:
            text = record.toUnicode()
            if "\x00" in text:
                raw_bytes = record.string
                try:
                    text = raw_bytes.decode("utf-16-be")
                except UnicodeDecodeError:
                    text = text.replace("\x00", "")
            return text.strip()
        except UnicodeDecodeError:
            return None

    def _cff_names(self, font: TTFont) -> dict[str, Optional[str]]:
        if "CFF " not in font:
            return {}
        try:
            cff = font["CFF "].cff
            top_dict = cff.topDictIndex[0]
            return {
                "fontname": cff.fontNames[0],
                "fullname": getattr(top_dict, "FullName", None),
                "familyname": getattr(top_dict, "FamilyName", None),
            }
        except Exception as e:
            logger.debug("Unreadable CFF table: %s", e)
            return {}

    def _size_params(self, font: TTFont):
        """FeatureParams of the GPOS ``size`` feature, if any."""
        if "GPOS" not in font:
            return None
        try:
            feature_list = getattr(font["GPOS"].table, "FeatureList", None)
            if not feature_list:
                return None
            for feature_record in feature_list.FeatureRecord:
                if feature_record.FeatureTag == "size":
                    return getattr(feature_record.Feature, "FeatureParams", None)
        except Exception as e:
            logger.debug("Unreadable GPOS table: %s", e)
        return None


def load_font(
    path: Optional[str],
    database: FontDatabase,
    managed_tree: bool = False,
    extractor: Optional[FontMetadataExtractor] = None,
) -> FontDatabase:
    """Index every face of one font file.

    Files whose checksum is already recorded for the same path are skipped.
    Faces without a family name get a mapping slot but no family entry.
    A file that yields no face leaves the database untouched, so it is
    retried on the next run.
    """
    if not path:
        return database
    logger.debug("Loading font: %s", path)
    if extractor is None:
        extractor = FontMetadataExtractor()

    try:
        checksum = file_checksum(path)
    except OSError as e:
        logger.warning("Failed to load %s: %s", path, e)
        return database

    if database.checksums.get(checksum) == path:
        logger.debug("Font already indexed: %s", path)
        return database

    face_count = extractor.probe_face_count(path)
    if face_count > 1:
        records = [extractor.extract(path, index) for index in range(face_count)]
    elif face_count == 1:
        records = [extractor.extract(path)]
    else:
        records = []
    records = [record for record in records if record is not None]

    if not records:
        logger.warning("Failed to load %s", path)
        return database

    database.checksums[checksum] = path
    for record in records:
        if managed_tree:
            record.filename = os.path.basename(path)
        database.add_face(record)
        if not record.names.family:
            logger.debug("Font with broken names table: %s, ignored", path)
    return database


def scan_dir(
    dirname: str | Path,
    database: FontDatabase,
    recursive: bool = False,
    managed_tree: bool = True,
    system: SystemKind = SystemKind.UNIX,
    extractor: Optional[FontMetadataExtractor] = None,
) -> FontDatabase:
    """Index the fonts found in one directory.

    Each extension is globbed in lower then upper case, so a file is only
    seen twice on case-insensitive filesystems, where the second occurrence
    is skipped by its checksum.
    """
    dirname = str(dirname)
    pattern = "**/*." if recursive else "*."
    found: list[str] = []
    for ext in FONT_EXTENSIONS:
        for spelling in (ext, ext.upper()):
            logger.debug("Scanning '%s' for '%s' fonts", dirname, spelling)
            matches = glob.glob(
                os.path.join(glob.escape(dirname), pattern + spelling),
                recursive=recursive,
            )
            logger.debug("%d fonts found", len(matches))
            found.extend(sorted(matches))
    logger.info("%d fonts found in '%s'", len(found), dirname)

    if extractor is None:
        extractor = FontMetadataExtractor()
    for font_path in found:
        database = load_font(
            normalize_path(font_path, system), database, managed_tree, extractor
        )
    return database


def scan_font_tree(
    database: FontDatabase,
    config: Optional[IndexConfig] = None,
    extractor: Optional[FontMetadataExtractor] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> FontDatabase:
    """Scan every configured font directory (non-recursively)."""
    if config is None:
        config = IndexConfig.from_env()
    if config.scans_os_fonts:
        logger.info("Scanning font directories:")
    else:
        logger.info("Scanning font directories and OS fonts:")

    font_dirs: list[str] = []
    for font_dir in config.font_dirs:
        font_dir = normalize_path(font_dir, config.system)
        if font_dir not in font_dirs:
            font_dirs.append(font_dir)

    if extractor is None:
        extractor = FontMetadataExtractor()
    total = len(font_dirs)
    for count, font_dir in enumerate(font_dirs, start=1):
        database = scan_dir(
            font_dir,
            database,
            recursive=False,
            managed_tree=True,
            system=config.system,
            extractor=extractor,
        )
        if progress_callback:
            progress_callback(count, total)
    return database


def run_command(argv: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        argv,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        check=False,
    )


def read_fcdata(
    lines: Iterable[str], system: SystemKind = SystemKind.UNIX
) -> list[str]:
    """Extract normalized font paths from ``fc-list : file`` output."""
    fonts = []
    for line in lines:
        font_path = line.strip("\r\n").partition(": ")[0].strip()
        if font_path.endswith(":"):
            font_path = font_path[:-1]
        ext = os.path.splitext(font_path)[1][1:].lower()
        if ext in FONT_EXTENSIONS:
            fonts.append(normalize_path(font_path, system))
    return fonts


def list_os_fonts() -> list[str]:
    """Raw lines reported by the fontconfig cache."""
    logger.info("Executing '%s'", " ".join(FC_LIST_COMMAND))
    try:
        proc = run_command(FC_LIST_COMMAND)
    except FileNotFoundError:
        logger.warning("'%s' not found, system fonts are not indexed", FC_LIST_COMMAND[0])
        return []
    if proc.returncode != 0:
        logger.error("%s failed: %s", FC_LIST_COMMAND[0], proc.stderr)
        return []
    return proc.stdout.splitlines()


def scan_os_fonts(
    database: FontDatabase,
    config: Optional[IndexConfig] = None,
    extractor: Optional[FontMetadataExtractor] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> FontDatabase:
    """Index the fonts known to fontconfig.

    Skipped when an OS font directory is configured: those fonts are part of
    the font tree already.
    """
    if config is None:
        config = IndexConfig.from_env()
    if not config.scans_os_fonts:
        logger.debug("OS font directory set to '%s', skipping fc-list", config.os_font_dir)
        return database

    logger.info("Scanning system fonts:")
    logger.info("Parsing the result...")
    fonts = read_fcdata(list_os_fonts(), config.system)
    logger.info("%d fonts found", len(fonts))

    if extractor is None:
        extractor = FontMetadataExtractor()
    total = len(fonts)
    for count, font_path in enumerate(fonts, start=1):
        database = load_font(font_path, database, False, extractor)
        if progress_callback:
            progress_callback(count, total)
    return database


def update(
    database: Optional[FontDatabase] = None,
    force: bool = False,
    config: Optional[IndexConfig] = None,
    extractor: Optional[FontMetadataExtractor] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> FontDatabase:
    """Bring a database up to date with the font tree and the OS fonts.

    The database is rebuilt from scratch when ``force`` is set or when its
    version is not the current one; otherwise new fonts are merged into it.
    """
    if force:
        database = FontDatabase.new()
    elif database is None or not database.is_current:
        logger.info("Old font names database version, generating new one")
        database = FontDatabase.new()

    if config is None:
        config = IndexConfig.from_env()
    if extractor is None:
        extractor = FontMetadataExtractor()
    database = scan_font_tree(database, config, extractor, progress_callback)
    database = scan_os_fonts(database, config, extractor, progress_callback)
    return database
