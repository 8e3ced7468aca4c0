import pytest

from walletdb.exceptions import RecordDecodeError
from walletdb.serialization import DataStream, MAX_COLLECTION_SIZE


def test_read_past_end() -> None:
    stream = DataStream(b"\x01\x02")
    with pytest.raises(RecordDecodeError):
        stream.read_int32()


def test_write_keeps_read_position() -> None:
    stream = DataStream()
    stream.write_int32(5)
    stream.write_string("abc")
    assert stream.read_int32() == 5
    stream.write_bool(True)
    assert stream.read_string() == "abc"
    assert stream.read_bool()
    assert stream.is_empty()


def test_read_optional_hash() -> None:
    assert DataStream(b"\x01" * 31).read_optional_hash256() is None
    assert DataStream(b"\x01" * 32).read_optional_hash256() == b"\x01" * 32


def test_read_bad_string() -> None:
    with pytest.raises(RecordDecodeError):
        DataStream(b"\x02\xff\xfe").read_string()


def test_collection_size_limit() -> None:
    stream = DataStream()
    stream.write_varint(MAX_COLLECTION_SIZE + 1)
    with pytest.raises(RecordDecodeError):
        stream.read_list(stream.read_byte)


def test_string_map_is_written_in_key_order() -> None:
    stream = DataStream()
    stream.write_string_map({ "b": "2", "a": "1" })
    assert stream.getvalue() == b"\x02\x01a\x011\x01b\x012"
    assert stream.read_string_map() == { "a": "1", "b": "2" }


@pytest.mark.parametrize("prefix", (
    b"\xff" * 9,
    b"\xfe\xff\xff\xff\x7f",
))
def test_read_oversized_length_prefix(prefix) -> None:
    with pytest.raises(RecordDecodeError):
        DataStream(prefix).read_varbytes()
    with pytest.raises(RecordDecodeError):
        DataStream(prefix).read_string()


def test_read_negative_size() -> None:
    with pytest.raises(RecordDecodeError):
        DataStream(b"\x01\x02").read(-1)


def test_write_hash_wrong_length() -> None:
    stream = DataStream()
    with pytest.raises(ValueError):
        stream.write_hash256(bytes(31))
    with pytest.raises(ValueError):
        stream.write_hash160(bytes(32))
    assert stream.is_empty()
