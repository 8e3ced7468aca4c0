from io import BytesIO
import struct
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from bitcoinx import (pack_byte, pack_le_int32, pack_le_int64, pack_le_uint32, pack_le_uint64,
    pack_varbytes, pack_varint, read_le_int32, read_le_int64, read_le_uint32, read_le_uint64,
    read_varbytes, read_varint)

from .exceptions import RecordDecodeError


T = TypeVar("T")

# A serialized map or vector larger than this is treated as corrupt rather than allocated.
MAX_COLLECTION_SIZE = 0x02000000


class DataStream:
    """
    A bytes stream with the wallet record encodings on top of the bitcoinx packing primitives.

    Reading past the end, or reading a malformed value, raises `RecordDecodeError`. Writing
    appends to the end of the stream.
    """

    def __init__(self, data: bytes=b"") -> None:
        self._stream = BytesIO(data)

    def getvalue(self) -> bytes:
        return self._stream.getvalue()

    def remaining(self) -> int:
        return len(self._stream.getbuffer()) - self._stream.tell()

    def is_empty(self) -> bool:
        return self.remaining() == 0

    def read(self, size: int) -> bytes:
        if size < 0 or size > self.remaining():
            raise RecordDecodeError(
                f"Unexpected end of data, wanted {size} have {self.remaining()}")
        return self._stream.read(size)

    def read_remaining(self) -> bytes:
        return self._stream.read()

    def write(self, data: bytes) -> None:
        position = self._stream.tell()
        self._stream.seek(0, 2)
        self._stream.write(data)
        self._stream.seek(position)

    def _read_with(self, reader: Callable[[Callable[[int], bytes]], T]) -> T:
        try:
            return reader(self.read)
        except struct.error as e:
            raise RecordDecodeError(f"Malformed value: {e}") from e

    # Integers.

    def read_byte(self) -> int:
        return self.read(1)[0]

    def write_byte(self, value: int) -> None:
        self.write(pack_byte(value))

    def read_bool(self) -> bool:
        return self.read_byte() != 0

    def write_bool(self, value: bool) -> None:
        self.write_byte(1 if value else 0)

    def read_int32(self) -> int:
        return self._read_with(read_le_int32)

    def write_int32(self, value: int) -> None:
        self.write(pack_le_int32(value))

    def read_uint32(self) -> int:
        return self._read_with(read_le_uint32)

    def write_uint32(self, value: int) -> None:
        self.write(pack_le_uint32(value))

    def read_int64(self) -> int:
        return self._read_with(read_le_int64)

    def write_int64(self, value: int) -> None:
        self.write(pack_le_int64(value))

    def read_uint64(self) -> int:
        return self._read_with(read_le_uint64)

    def write_uint64(self, value: int) -> None:
        self.write(pack_le_uint64(value))

    def read_varint(self) -> int:
        return self._read_with(read_varint)

    def write_varint(self, value: int) -> None:
        self.write(pack_varint(value))

    # Byte vectors and strings.

    def read_varbytes(self) -> bytes:
        return self._read_with(read_varbytes)

    def write_varbytes(self, value: bytes) -> None:
        self.write(pack_varbytes(value))

    def read_string(self) -> str:
        data = self.read_varbytes()
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RecordDecodeError(f"Malformed string: {e}") from e

    def write_string(self, value: str) -> None:
        self.write_varbytes(value.encode("utf-8"))

    def read_hash256(self) -> bytes:
        return self.read(32)

    def write_hash256(self, value: bytes) -> None:
        if len(value) != 32:
            raise ValueError(f"hash length {len(value)}")
        self.write(value)

    def read_hash160(self) -> bytes:
        return self.read(20)

    def write_hash160(self, value: bytes) -> None:
        if len(value) != 20:
            raise ValueError(f"hash length {len(value)}")
        self.write(value)

    def read_optional_hash256(self) -> Optional[bytes]:
        """Legacy rows may end before a trailing hash, this is not an error."""
        if self.remaining() < 32:
            return None
        return self.read(32)

    # Collections.

    def read_collection_size(self) -> int:
        count = self.read_varint()
        if count > MAX_COLLECTION_SIZE:
            raise RecordDecodeError(f"Collection size {count} too large")
        return count

    def read_list(self, read_one: Callable[[], T]) -> List[T]:
        return [ read_one() for i in range(self.read_collection_size()) ]

    def write_list(self, items: List[T], write_one: Callable[[T], None]) -> None:
        self.write_varint(len(items))
        for item in items:
            write_one(item)

    def read_string_map(self) -> Dict[str, str]:
        result: Dict[str, str] = {}
        for i in range(self.read_collection_size()):
            key = self.read_string()
            result[key] = self.read_string()
        return result

    def write_string_map(self, value: Dict[str, str]) -> None:
        # Ordered maps serialize in key order.
        self.write_varint(len(value))
        for key in sorted(value):
            self.write_string(key)
            self.write_string(value[key])

    def read_string_pairs(self) -> List[Tuple[str, str]]:
        return self.read_list(lambda: (self.read_string(), self.read_string()))

    def write_string_pairs(self, value: List[Tuple[str, str]]) -> None:
        self.write_varint(len(value))
        for first, second in value:
            self.write_string(first)
            self.write_string(second)
