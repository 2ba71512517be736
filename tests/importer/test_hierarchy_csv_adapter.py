import pytest

from registry_app.importer.adapters import CSVStructureError, HierarchyCSVAdapter
from registry_app.importer.contracts import (
    canonical_ip_address,
    get_hierarchy_optional_headers,
    get_hierarchy_required_headers,
    normalize_header,
)


def test_adapter_normalizes_headers_and_values():
    data = (
        "Site Name,Cell-Name,LINE_NUMBER,equipment.name,Equipment Type,Tag ID,Description,Make,Model\n"
        "  Plant A ,Line 1, 001 ,Robot 1,robot,  PLC_001 ,  ,ABB,IRB\n"
    ).encode("utf-8")

    adapter = HierarchyCSVAdapter(data)
    rows = list(adapter.iter_rows())

    assert adapter.header.is_valid
    assert adapter.header.present[:3] == ("site_name", "cell_name", "line_number")
    assert len(rows) == 1
    parsed = rows[0]
    assert parsed.raw["site_name"] == "  Plant A "
    assert parsed.row.site_name == "Plant A"
    assert parsed.row.line_number == "001"
    assert parsed.row.tag_id == "PLC_001"
    assert parsed.row.description is None
    assert parsed.row.ip_address is None
    assert adapter.statistics.rows_processed == 1


def test_adapter_skips_blank_rows_and_tracks_statistics(make_csv, make_line):
    data = make_csv(make_line("PLC_001"), ",,,,,,,,,,", make_line("PLC_002"))

    adapter = HierarchyCSVAdapter(data)
    rows = list(adapter.iter_rows())

    assert [row.sequence_number for row in rows] == [1, 2]
    assert [row.source_line for row in rows] == [2, 4]
    assert adapter.statistics.rows_skipped_blank == 1


def test_adapter_yields_blank_rows_when_requested(make_csv, make_line):
    data = make_csv(make_line("PLC_001"), ",,,,,,,,,,")

    rows = list(HierarchyCSVAdapter(data, skip_blank_rows=False).iter_rows())

    assert len(rows) == 2
    assert rows[1].row.tag_id is None


def test_adapter_keeps_unrecognized_columns_as_extras():
    data = ("site_name,notes,cell_name\nPlant A,hello,Line 1\n").encode("utf-8")

    adapter = HierarchyCSVAdapter(data)
    row = next(adapter.iter_rows()).row

    assert row.extras == {"notes": "hello"}
    assert adapter.header.unrecognized == ("notes",)
    assert not adapter.header.is_valid


def test_source_line_accounts_for_multiline_values():
    header = "site_name,cell_name,line_number,equipment_name,equipment_type,tag_id,description,make,model\n"
    data = (header + 'A,L,1,R,ROBOT,PLC_001,"two\nlines",m,x\nA,L,1,R,ROBOT,PLC_002,d,m,x\n').encode("utf-8")

    rows = list(HierarchyCSVAdapter(data).iter_rows())

    assert rows[0].row.description == "two\nlines"
    assert [row.source_line for row in rows] == [3, 4]


def test_unterminated_quote_raises_structure_error():
    data = b'site_name,cell_name\n"Plant A,Line 1\n'

    adapter = HierarchyCSVAdapter(data)
    with pytest.raises(CSVStructureError) as excinfo:
        list(adapter.iter_rows())

    assert "Unable to parse file" in str(excinfo.value)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Site Name", "site_name"),
        ("  TAG-ID ", "tag_id"),
        ("\ufeffsite_name", "site_name"),
        ("firmware.version", "firmware_version"),
    ],
)
def test_normalize_header(raw, expected):
    assert normalize_header(raw) == expected


def test_contract_splits_required_and_optional_columns():
    assert get_hierarchy_required_headers() == (
        "site_name",
        "cell_name",
        "line_number",
        "equipment_name",
        "equipment_type",
        "tag_id",
        "description",
        "make",
        "model",
    )
    assert get_hierarchy_optional_headers() == ("ip_address", "firmware_version")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("FE80:0:0:0:0:0:0:1", "fe80::1"),
        ("2001:DB8:0:0:0:0:2:1", "2001:db8::2:1"),
        ("010.000.001.009", "10.0.1.9"),
    ],
)
def test_canonical_ip_address(raw, expected):
    assert canonical_ip_address(raw) == expected


def test_adapter_canonicalizes_valid_addresses_only(make_csv, make_line):
    data = make_csv(make_line("PLC_001", ip_address="FE80:0:0:0:0:0:0:1"), make_line("PLC_002", ip_address="not-an-ip"))

    rows = [parsed.row for parsed in HierarchyCSVAdapter(data).iter_rows()]

    assert rows[0].ip_address == "fe80::1"
    assert rows[1].ip_address == "not-an-ip"


def test_canonical_ip_address_rejects_invalid_values():
    with pytest.raises(ValueError):
        canonical_ip_address("::ffff:1.2.3.4")
