import datetime
import plistlib

import pytest

from warden.core.errors import MalformedPlist
from warden.parsers.plist import EntitlementsDecoder, load_plist


def test_decodes_xml_entitlements():
    payload = plistlib.dumps({"com.apple.security.app-sandbox": True})
    assert EntitlementsDecoder().decode(payload) == {"com.apple.security.app-sandbox": True}


@pytest.mark.parametrize("payload", [b"", b"\x00\x00\x00\x00", b"  \n\t"])
def test_empty_payloads_decode_to_empty_mapping(payload):
    assert EntitlementsDecoder().decode(payload) == {}


def test_trailing_nul_padding_is_stripped():
    payload = plistlib.dumps({"a": 1}) + b"\x00" * 7
    assert EntitlementsDecoder().decode(payload) == {"a": 1}


def test_decoding_is_deterministic():
    payload = plistlib.dumps({"k": ["x", "y"], "n": {"nested": False}})
    decoder = EntitlementsDecoder()
    assert decoder.decode(payload) == decoder.decode(payload)


def test_garbage_raises_malformed_plist():
    with pytest.raises(MalformedPlist):
        EntitlementsDecoder().decode(b"<?xml version='1.0'?><plist><dict><key>")


def test_non_dictionary_root_is_rejected():
    with pytest.raises(MalformedPlist, match="expected dict"):
        load_plist(plistlib.dumps(["not", "a", "dict"]), path="Info.plist")


def test_binary_plists_load():
    data = plistlib.dumps({"CFBundleExecutable": "Demo"}, fmt=plistlib.FMT_BINARY)
    assert load_plist(data)["CFBundleExecutable"] == "Demo"


def test_entitlements_json_export_converts_plist_types():
    stamp = datetime.datetime(2024, 1, 2, 3, 4, 5)
    payload = plistlib.dumps({"blob": b"\x00\xff", "when": stamp, "list": [b"ab"]})
    ents = EntitlementsDecoder().decode_entitlements(payload)
    exported = ents.to_json_dict()
    assert exported["blob"] == "AP8="
    assert exported["when"] == "2024-01-02T03:04:05"
    assert exported["list"] == ["YWI="]
    assert ents.count == 3
    assert ents.keys() == ["blob", "list", "when"]


BAD_DATE = (
    b'<?xml version="1.0" encoding="UTF-8"?>\n'
    b'<plist version="1.0"><dict><key>a</key><date>not-a-date</date></dict></plist>\n'
)


def test_bad_date_element_raises_malformed_plist():
    with pytest.raises(MalformedPlist):
        EntitlementsDecoder().decode(BAD_DATE)
    with pytest.raises(MalformedPlist):
        load_plist(BAD_DATE, path="Info.plist")


def test_binary_payloads_are_not_trimmed():
    decoder = EntitlementsDecoder()
    trailing = b"\x00\t\n\x0b\x0c\r "
    hits = 0
    for length in range(200, 300):
        values = {"k": "x" * length}
        payload = plistlib.dumps(values, fmt=plistlib.FMT_BINARY)
        hits += payload[-1:] in [bytes([b]) for b in trailing]
        assert decoder.decode(payload) == values
    assert hits > 0
