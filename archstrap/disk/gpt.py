# archstrap/disk/gpt.py
"""
GPT (GUID Partition Table) reader and writer.

The table is read from and written to a file object opened on the block device
(or a disk image). Partition slots are numbered from 1, as the kernel numbers
them; a slot whose type GUID is all zeros is unused.
"""
import struct
import uuid
import zlib
from dataclasses import dataclass, field, replace
from typing import BinaryIO, Iterator, List, Optional, Sequence, Tuple

GPT_SIGNATURE = b'EFI PART'
GPT_REVISION = 0x00010000
GPT_HEADER_SIZE = 92
GPT_ENTRY_SIZE = 128
GPT_ENTRY_COUNT = 128  # Standard: 128 entries = 32 sectors of 512 bytes

HEADER_FORMAT = "<8sIIIIQQQQ16sQIII"
ENTRY_FORMAT = "<16s16sQQQ72s"

SECTOR_SIZES = (512, 4096)

# Well-known partition type GUIDs
UNUSED_GUID = uuid.UUID(int=0)
EFI_SYSTEM_GUID = uuid.UUID("C12A7328-F81F-11D2-BA4B-00A0C93EC93B")
LINUX_FILESYSTEM_GUID = uuid.UUID("0FC63DAF-8483-4772-8E79-3D69D8477DE4")
BIOS_BOOT_GUID = uuid.UUID("21686148-6449-6E6F-744E-656564454649")


class GPTError(Exception):
    """Raised when no valid GPT can be read from the device."""


def _crc32(data: bytes) -> int:
    return zlib.crc32(data) & 0xFFFFFFFF


def device_size(fileobj: BinaryIO) -> int:
    """Size in bytes of a block device or image file."""
    position = fileobj.tell()
    try:
        return fileobj.seek(0, 2)
    finally:
        fileobj.seek(position)


@dataclass
class GPTPartitionEntry:
    partition_type_guid: uuid.UUID = UNUSED_GUID
    unique_partition_guid: uuid.UUID = UNUSED_GUID
    starting_lba: int = 0
    ending_lba: int = 0
    attribute_bits: int = 0
    partition_name: str = ""

    def is_unused(self) -> bool:
        return self.partition_type_guid == UNUSED_GUID

    def is_used(self) -> bool:
        return not self.is_unused()

    def size(self) -> int:
        """Length in sectors."""
        return self.ending_lba - self.starting_lba + 1

    def overlaps(self, starting_lba: int, ending_lba: int) -> bool:
        return not (self.ending_lba < starting_lba or ending_lba < self.starting_lba)

    @classmethod
    def from_bytes(cls, data: bytes) -> "GPTPartitionEntry":
        type_guid, unique_guid, first, last, attrs, name = struct.unpack_from(ENTRY_FORMAT, data)
        return cls(
            partition_type_guid=uuid.UUID(bytes_le=type_guid),
            unique_partition_guid=uuid.UUID(bytes_le=unique_guid),
            starting_lba=first,
            ending_lba=last,
            attribute_bits=attrs,
            partition_name=name.decode("utf-16-le", errors="replace").split("\x00", 1)[0],
        )

    def to_bytes(self, entry_size: int = GPT_ENTRY_SIZE) -> bytes:
        name = self.partition_name.encode("utf-16-le")[:72]
        packed = struct.pack(
            ENTRY_FORMAT,
            self.partition_type_guid.bytes_le,
            self.unique_partition_guid.bytes_le,
            self.starting_lba,
            self.ending_lba,
            self.attribute_bits,
            name,
        )
        return packed.ljust(entry_size, b"\x00")


@dataclass
class GPTHeader:
    current_lba: int
    backup_lba: int
    first_usable_lba: int
    last_usable_lba: int
    disk_guid: uuid.UUID
    partition_entry_lba: int
    number_of_partition_entries: int = GPT_ENTRY_COUNT
    size_of_partition_entry: int = GPT_ENTRY_SIZE
    partition_entry_array_crc32: int = 0
    revision: int = GPT_REVISION
    header_size: int = GPT_HEADER_SIZE

    @classmethod
    def from_bytes(cls, data: bytes) -> "GPTHeader":
        (signature, revision, header_size, crc, _reserved, current_lba, backup_lba,
         first_usable, last_usable, disk_guid, entries_lba, count, entry_size,
         entries_crc) = struct.unpack_from(HEADER_FORMAT, data)

        if signature != GPT_SIGNATURE:
            raise GPTError("GPT signature not found")
        if header_size < GPT_HEADER_SIZE or header_size > len(data):
            raise GPTError(f"Invalid GPT header size: {header_size}")

        # CRC32 over the declared header size, with the CRC field zeroed
        raw = bytearray(data[:header_size])
        struct.pack_into("<I", raw, 16, 0)
        if _crc32(bytes(raw)) != crc:
            raise GPTError("GPT header checksum mismatch")

        return cls(
            current_lba=current_lba,
            backup_lba=backup_lba,
            first_usable_lba=first_usable,
            last_usable_lba=last_usable,
            disk_guid=uuid.UUID(bytes_le=disk_guid),
            partition_entry_lba=entries_lba,
            number_of_partition_entries=count,
            size_of_partition_entry=entry_size,
            partition_entry_array_crc32=entries_crc,
            revision=revision,
            header_size=header_size,
        )

    def to_bytes(self, sector_size: int) -> bytes:
        hdr = bytearray(sector_size)
        struct.pack_into(
            HEADER_FORMAT, hdr, 0,
            GPT_SIGNATURE,
            self.revision,
            GPT_HEADER_SIZE,
            0,  # CRC32 placeholder
            0,  # Reserved
            self.current_lba,
            self.backup_lba,
            self.first_usable_lba,
            self.last_usable_lba,
            self.disk_guid.bytes_le,
            self.partition_entry_lba,
            self.number_of_partition_entries,
            self.size_of_partition_entry,
            self.partition_entry_array_crc32,
        )
        struct.pack_into("<I", hdr, 16, _crc32(bytes(hdr[:GPT_HEADER_SIZE])))
        return bytes(hdr)


@dataclass
class GPT:
    header: GPTHeader
    entries: List[GPTPartitionEntry] = field(default_factory=list)
    sector_size: int = 512

    # --- Construction ---

    @classmethod
    def find_from(cls, fileobj: BinaryIO, sector_size: Optional[int] = None) -> "GPT":
        """
        Reads the primary GPT. Without an explicit `sector_size` both 512 and 4096
        byte sectors are tried.

        Raises:
            GPTError: when no valid table is found.
        """
        sizes: Sequence[int] = (sector_size,) if sector_size else SECTOR_SIZES
        errors: List[GPTError] = []
        for size in sizes:
            try:
                return cls._read(fileobj, size)
            except GPTError as e:
                errors.append(e)
        # The 512 byte attempt says the most about a damaged table
        raise errors[0]

    @classmethod
    def _read(cls, fileobj: BinaryIO, sector_size: int) -> "GPT":
        fileobj.seek(sector_size)
        data = fileobj.read(sector_size)
        if len(data) < GPT_HEADER_SIZE:
            raise GPTError("Device too small for a GPT header")
        header = GPTHeader.from_bytes(data)

        fileobj.seek(header.partition_entry_lba * sector_size)
        array = fileobj.read(header.number_of_partition_entries * header.size_of_partition_entry)
        if _crc32(array) != header.partition_entry_array_crc32:
            raise GPTError("GPT partition entry array checksum mismatch")

        step = header.size_of_partition_entry
        entries = [GPTPartitionEntry.from_bytes(array[i:i + step]) for i in range(0, len(array), step)]
        return cls(header=header, entries=entries, sector_size=sector_size)

    @classmethod
    def create(cls, total_sectors: int, sector_size: int = 512, disk_guid: Optional[uuid.UUID] = None) -> "GPT":
        """Builds an empty in-memory table laid out for a device of `total_sectors`."""
        entry_sectors = -(-GPT_ENTRY_COUNT * GPT_ENTRY_SIZE // sector_size)
        first_usable_lba = 2 + entry_sectors
        last_usable_lba = total_sectors - 1 - entry_sectors - 1
        if last_usable_lba < first_usable_lba:
            raise GPTError(f"Device of {total_sectors} sectors is too small for a GPT")

        header = GPTHeader(
            current_lba=1,
            backup_lba=total_sectors - 1,
            first_usable_lba=first_usable_lba,
            last_usable_lba=last_usable_lba,
            disk_guid=disk_guid or uuid.uuid4(),
            partition_entry_lba=2,
        )
        entries = [GPTPartitionEntry() for _ in range(GPT_ENTRY_COUNT)]
        return cls(header=header, entries=entries, sector_size=sector_size)

    # --- Entry access (1-based, like the kernel numbering) ---

    def _slot(self, index: int) -> int:
        if not 1 <= index <= len(self.entries):
            raise IndexError(f"Partition index {index} out of range 1..{len(self.entries)}")
        return index - 1

    def __getitem__(self, index: int) -> GPTPartitionEntry:
        return self.entries[self._slot(index)]

    def __setitem__(self, index: int, entry: GPTPartitionEntry) -> None:
        self.entries[self._slot(index)] = entry

    def __len__(self) -> int:
        return len(self.entries)

    def iter(self) -> Iterator[Tuple[int, GPTPartitionEntry]]:
        for i, entry in enumerate(self.entries, start=1):
            yield i, entry

    def used(self) -> List[Tuple[int, GPTPartitionEntry]]:
        return [(i, e) for i, e in self.iter() if e.is_used()]

    def unused_indexes(self) -> List[int]:
        return [i for i, e in self.iter() if e.is_unused()]

    def find_by_name(self, name: str) -> Optional[Tuple[int, GPTPartitionEntry]]:
        for i, entry in self.used():
            if entry.partition_name == name:
                return i, entry
        return None

    # --- Serialization ---

    def _entry_array(self) -> bytes:
        size = self.header.size_of_partition_entry
        return b"".join(entry.to_bytes(size) for entry in self.entries)

    def write_into(self, fileobj: BinaryIO) -> None:
        """Writes the primary and backup headers and entry arrays."""
        array = self._entry_array()
        entries_crc = _crc32(array)
        entry_sectors = -(-len(array) // self.sector_size)

        primary = replace(self.header, partition_entry_array_crc32=entries_crc)
        backup = replace(
            primary,
            current_lba=primary.backup_lba,
            backup_lba=primary.current_lba,
            partition_entry_lba=primary.backup_lba - entry_sectors,
        )

        fileobj.seek(primary.partition_entry_lba * self.sector_size)
        fileobj.write(array)
        fileobj.seek(primary.current_lba * self.sector_size)
        fileobj.write(primary.to_bytes(self.sector_size))

        fileobj.seek(backup.partition_entry_lba * self.sector_size)
        fileobj.write(array)
        fileobj.seek(backup.current_lba * self.sector_size)
        fileobj.write(backup.to_bytes(self.sector_size))

        fileobj.flush()
        self.header = primary


def write_protective_mbr(fileobj: BinaryIO, total_sectors: int, sector_size: int = 512) -> None:
    """Write a protective MBR for GPT."""
    mbr = bytearray(sector_size)
    mbr[446] = 0x00  # Boot indicator (not bootable)
    mbr[447:450] = b"\x00\x02\x00"  # CHS start
    mbr[450] = 0xEE  # GPT protective type
    mbr[451:454] = b"\xff\xff\xff"  # CHS end
    struct.pack_into('<I', mbr, 454, 1)  # Start LBA = 1
    struct.pack_into('<I', mbr, 458, min(total_sectors - 1, 0xFFFFFFFF))
    mbr[510] = 0x55
    mbr[511] = 0xAA
    fileobj.seek(0)
    fileobj.write(mbr)
