import contextlib
import logging
import sqlite3
import time
from pathlib import Path
from typing import Optional

from fontnames import (
    DATABASE_VERSION,
    DesignSize,
    FaceNames,
    FaceRecord,
    FontDatabase,
)

logger = logging.getLogger(__name__)

_MAPPING_COLUMNS = (
    "mapping_id",
    "fontname",
    "fullname",
    "familyname",
    "filename",
    "names_fullname",
    "names_family",
    "names_subfamily",
    "names_psname",
    "weight",
    "width",
    "slant",
    "design_size",
    "design_range_top",
    "design_range_bottom",
    "face_index",
)


class FontNamesStore:
    """Persists a FontDatabase in SQLite."""

    def __init__(self, db_name="fontnames.db"):
        self.db_name = Path(db_name)
        logger.debug("Init db from %s", self.db_name)
        self._init_db()

    def _get_conn(self):
        conn = sqlite3.connect(self.db_name)
        conn.execute("PRAGMA journal_mode = DELETE")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self):
        self.db_name.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.closing(self._get_conn()) as conn, conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS mappings (
                    mapping_id INTEGER PRIMARY KEY,
                    fontname TEXT, fullname TEXT, familyname TEXT,
                    filename TEXT,
                    names_fullname TEXT, names_family TEXT,
                    names_subfamily TEXT, names_psname TEXT,
                    weight INTEGER, width INTEGER, slant REAL,
                    design_size INTEGER, design_range_top INTEGER,
                    design_range_bottom INTEGER,
                    face_index INTEGER
                );
                CREATE TABLE IF NOT EXISTS families (
                    family_name TEXT, mapping_id INTEGER,
                    FOREIGN KEY(mapping_id) REFERENCES mappings(mapping_id) ON DELETE CASCADE,
                    UNIQUE(family_name, mapping_id)
                );
                CREATE TABLE IF NOT EXISTS checksums (
                    checksum TEXT PRIMARY KEY,
                    path TEXT
                );
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_family_name ON families (family_name);
                CREATE INDEX IF NOT EXISTS idx_names_fullname ON mappings (names_fullname);
                CREATE INDEX IF NOT EXISTS idx_names_psname ON mappings (names_psname);
            """
            )

    def save(self, database: FontDatabase):
        """Replace the stored database in a single transaction."""
        mapping_rows = []
        for mapping_id, record in enumerate(database.mappings, start=1):
            size = record.size or DesignSize()
            mapping_rows.append(
                (
                    mapping_id,
                    record.fontname,
                    record.fullname,
                    record.familyname,
                    record.filename,
                    record.names.fullname,
                    record.names.family,
                    record.names.subfamily,
                    record.names.psname,
                    record.weight,
                    record.width,
                    record.slant,
                    size.design_size,
                    size.range_top,
                    size.range_bottom,
                    record.index,
                )
            )
        family_rows = [
            (family, mapping_id)
            for family, bucket in database.families.items()
            for mapping_id in bucket
        ]
        placeholders = ", ".join("?" for _ in _MAPPING_COLUMNS)

        with contextlib.closing(self._get_conn()) as conn, conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM families")
            cursor.execute("DELETE FROM mappings")
            cursor.execute("DELETE FROM checksums")
            cursor.executemany(
                f"INSERT INTO mappings ({', '.join(_MAPPING_COLUMNS)}) VALUES ({placeholders})",  # noqa: S608
                mapping_rows,
            )
            cursor.executemany(
                "INSERT OR IGNORE INTO families (family_name, mapping_id) VALUES (?, ?)",
                family_rows,
            )
            cursor.executemany(
                "INSERT INTO checksums (checksum, path) VALUES (?, ?)",
                list(database.checksums.items()),
            )
            self._metadata_upsert(cursor, "version", database.version or "")
            self._metadata_upsert(cursor, "last_update_time", str(int(time.time())))
        logger.debug(
            "Saved %d faces, %d families to %s",
            len(mapping_rows),
            len(database.families),
            self.db_name,
        )

    def load(self) -> Optional[FontDatabase]:
        """Read the stored database.

        Returns ``None`` when nothing was saved yet or when the database was
        written with another schema version, so that the next update
        rebuilds it.
        """
        version = self.metadata_get("version")
        if version is None:
            return None
        if version != DATABASE_VERSION:
            logger.info("Stored database version %s is outdated", version)
            return None
        database = FontDatabase(version=version)

        with contextlib.closing(self._get_conn()) as conn:
            rows = conn.execute(
                f"SELECT {', '.join(_MAPPING_COLUMNS)} FROM mappings ORDER BY mapping_id"  # noqa: S608
            ).fetchall()
            for row in rows:
                database.mappings.append(self._row_to_record(row))
            for family, mapping_id in conn.execute(
                "SELECT family_name, mapping_id FROM families ORDER BY rowid"
            ):
                database.families.setdefault(family, []).append(mapping_id)
            for checksum, path in conn.execute(
                "SELECT checksum, path FROM checksums ORDER BY rowid"
            ):
                database.checksums[checksum] = path
        return database

    @staticmethod
    def _row_to_record(row) -> FaceRecord:
        (
            _mapping_id,
            fontname,
            fullname,
            familyname,
            filename,
            names_fullname,
            names_family,
            names_subfamily,
            names_psname,
            weight,
            width,
            slant,
            design_size,
            range_top,
            range_bottom,
            face_index,
        ) = row
        size = DesignSize(design_size, range_top, range_bottom)
        return FaceRecord(
            fontname=fontname,
            fullname=fullname,
            familyname=familyname,
            filename=filename,
            names=FaceNames(
                fullname=names_fullname,
                family=names_family,
                subfamily=names_subfamily,
                psname=names_psname,
            ),
            weight=weight,
            width=width,
            slant=slant,
            size=size if size.to_dict() else None,
            index=face_index,
        )

    @staticmethod
    def _metadata_upsert(cursor, key: str, value: str):
        cursor.execute(
            """
            INSERT INTO metadata (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
            (key, value),
        )

    def metadata_get(self, key: str) -> Optional[str]:
        with contextlib.closing(self._get_conn()) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM metadata WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row[0] if row else None

    def search_by_font(self, font_name: str) -> list[tuple[str, Optional[int]]]:
        """Return ``(filename, face_index)`` of faces matching a name.

        Full names, family names and PostScript names of both tiers are
        compared case-insensitively.
        """
        with contextlib.closing(self._get_conn()) as conn:
            cursor = conn.cursor()
            query = """
                SELECT DISTINCT m.mapping_id, m.filename, m.face_index
                FROM mappings m
                LEFT JOIN families fam ON m.mapping_id = fam.mapping_id
                WHERE fam.family_name = ? COLLATE NOCASE
                   OR m.names_fullname = ? COLLATE NOCASE
                   OR m.names_psname = ? COLLATE NOCASE
                   OR m.fullname = ? COLLATE NOCASE
                   OR m.fontname = ? COLLATE NOCASE
                ORDER BY m.mapping_id
            """
            cursor.execute(query, (font_name,) * 5)
            return [(filename, index) for _, filename, index in cursor.fetchall()]

    def table_length(self, table_name: str) -> int:
        # Whitelist of allowed table names to prevent SQL injection
        allowed_tables = {"mappings", "families", "checksums", "metadata"}
        if table_name not in allowed_tables:
            raise ValueError(f"Invalid table name: {table_name}")

        with contextlib.closing(self._get_conn()) as conn:
            cursor = conn.cursor()
            query = f"SELECT COUNT(*) FROM {table_name}"  # noqa: S608
            cursor.execute(query)
            row = cursor.fetchone()
            return row[0] if row else 0
