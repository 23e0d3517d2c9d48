import pytest

from fontnames import (
    DATABASE_VERSION,
    DesignSize,
    FaceNames,
    FaceRecord,
    FontDatabase,
)


def _record(family, fullname=None, psname=None, filename="font.otf"):
    return FaceRecord(
        fontname=psname,
        fullname=fullname,
        familyname=family,
        filename=filename,
        names=FaceNames(fullname=fullname, family=family, psname=psname),
    )


def test_new_database_is_current_and_empty():
    database = FontDatabase.new()

    assert database.version == DATABASE_VERSION
    assert database.is_current
    assert database.mappings == []
    assert database.families == {}
    assert database.checksums == {}


def test_add_face_returns_one_based_ids_and_indexes_family():
    database = FontDatabase.new()

    first = database.add_face(_record("Alpha"))
    second = database.add_face(_record("Alpha"))
    third = database.add_face(_record("Beta"))

    assert (first, second, third) == (1, 2, 3)
    assert database.families == {"Alpha": [1, 2], "Beta": [3]}
    assert database.face(3).names.family == "Beta"


def test_face_without_family_keeps_its_slot():
    database = FontDatabase.new()

    orphan = database.add_face(_record(None, fullname="Nameless"))
    indexed = database.add_face(_record("Gamma"))

    assert orphan == 1
    assert indexed == 2
    assert database.families == {"Gamma": [2]}


def test_every_named_face_is_in_exactly_one_bucket():
    database = FontDatabase.new()
    for family in ["A", "B", None, "A", "C", None]:
        database.add_face(_record(family))

    for mapping_id, record in enumerate(database.mappings, start=1):
        buckets = [
            name for name, ids in database.families.items() if mapping_id in ids
        ]
        if record.names.family:
            assert buckets == [record.names.family]
        else:
            assert buckets == []


def test_face_rejects_zero():
    database = FontDatabase.new()
    database.add_face(_record("Alpha"))

    with pytest.raises(IndexError):
        database.face(0)


def test_lookup_by_family_is_case_insensitive():
    database = FontDatabase.new()
    database.add_face(_record("Latin Modern Roman", filename="lmroman10.otf"))
    database.add_face(_record("Latin Modern Roman", filename="lmroman12.otf"))
    database.add_face(_record("Other"))

    found = database.lookup("latin modern ROMAN")

    assert [r.filename for r in found] == ["lmroman10.otf", "lmroman12.otf"]


def test_lookup_by_full_and_postscript_name():
    database = FontDatabase.new()
    database.add_face(
        _record("Test Sans", fullname="Test Sans Bold", psname="TestSans-Bold")
    )

    assert len(database.lookup("test sans bold")) == 1
    assert len(database.lookup("TESTSANS-BOLD")) == 1
    assert database.lookup("Missing") == []
    assert database.lookup("  ") == []


def test_to_dict_omits_absent_fields():
    record = FaceRecord(
        fullname="X Regular",
        filename="x.otf",
        names=FaceNames(family="X"),
        size=DesignSize(design_size=100),
    )

    data = record.to_dict()

    assert data == {
        "fullname": "X Regular",
        "filename": "x.otf",
        "names": {"family": "X"},
        "size": {"design_size": 100},
    }


def test_dict_form_survives_reload():
    database = FontDatabase.new()
    database.add_face(_record("Alpha", fullname="Alpha Regular"))
    database.checksums["abc"] = "/fonts/alpha.otf"

    restored = FontDatabase.from_dict(database.to_dict())

    assert restored == database
