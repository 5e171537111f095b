"""Node records and their binary layout.

Every record starts with a one byte kind tag and the int32 node id. Records
that carry a rank follow with a float32; records that carry structure follow
with an int32 length and that many int32 neighbor ids. Everything is
big-endian, and a record file is just records written back to back.
"""
import base64
import enum
import glob
import io
import os
import struct
from collections import namedtuple

import numpy as np

from schimmy_hits.errors import RecordFormatError
from schimmy_hits.logmath import to_float32

INT32_MIN = -2 ** 31
INT32_MAX = 2 ** 31 - 1

PART_FILE_GLOB = 'part-*'

_HEADER = struct.Struct('>bi')
_RANK = struct.Struct('>f')
_LENGTH = struct.Struct('>i')
_ADJ_DTYPE = np.dtype('>i4')


class NodeKind(enum.IntEnum):
    HUB_COMPLETE = 1
    AUTH_COMPLETE = 2
    HUB_MASS = 3
    AUTH_MASS = 4
    HUB_STRUCTURE = 5
    AUTH_STRUCTURE = 6

    @classmethod
    def from_code(cls, code):
        try:
            return cls(code)
        except ValueError:
            raise RecordFormatError('unknown node kind: %r' % (code,))

    @property
    def is_hub(self):
        return self in (NodeKind.HUB_COMPLETE, NodeKind.HUB_MASS,
                        NodeKind.HUB_STRUCTURE)

    @property
    def is_authority(self):
        return not self.is_hub

    @property
    def carries_rank(self):
        return self in (NodeKind.HUB_COMPLETE, NodeKind.AUTH_COMPLETE,
                        NodeKind.HUB_MASS, NodeKind.AUTH_MASS)

    @property
    def carries_adjacency(self):
        return self in (NodeKind.HUB_COMPLETE, NodeKind.AUTH_COMPLETE,
                        NodeKind.HUB_STRUCTURE, NodeKind.AUTH_STRUCTURE)

    @property
    def is_complete(self):
        return self in (NodeKind.HUB_COMPLETE, NodeKind.AUTH_COMPLETE)

    @property
    def is_mass(self):
        return self in (NodeKind.HUB_MASS, NodeKind.AUTH_MASS)

    @property
    def is_structure(self):
        return self in (NodeKind.HUB_STRUCTURE, NodeKind.AUTH_STRUCTURE)

    @property
    def tag(self):
        """``'H'`` for hub kinds, ``'A'`` for authority kinds."""
        return 'H' if self.is_hub else 'A'


class NodeRecord(namedtuple('NodeRecord',
                            ['node_id', 'kind', 'rank', 'adjacency'])):
    """One node's hub or authority state, or a message about it.

    Fields a kind does not carry are normalized away: ``rank`` is ``None``
    for structure records and ``adjacency`` is empty for mass records. Ranks
    are log-domain and rounded to float32.
    """
    __slots__ = ()

    def __new__(cls, node_id, kind, rank=None, adjacency=()):
        kind = NodeKind.from_code(kind)

        if kind.carries_rank:
            if rank is None:
                raise RecordFormatError(
                    '%s record for node %s needs a rank' % (kind.name, node_id))
            rank = to_float32(rank)
        else:
            rank = None

        if kind.carries_adjacency:
            adjacency = tuple(int(n) for n in adjacency)
        else:
            adjacency = ()

        return super().__new__(
            cls, int(node_id), kind, rank, adjacency)

    @classmethod
    def complete(cls, node_id, hub, rank, adjacency=()):
        kind = NodeKind.HUB_COMPLETE if hub else NodeKind.AUTH_COMPLETE
        return cls(node_id, kind, rank, adjacency)

    @classmethod
    def mass(cls, node_id, hub, rank):
        kind = NodeKind.HUB_MASS if hub else NodeKind.AUTH_MASS
        return cls(node_id, kind, rank)

    @classmethod
    def structure(cls, node_id, hub, adjacency):
        kind = NodeKind.HUB_STRUCTURE if hub else NodeKind.AUTH_STRUCTURE
        return cls(node_id, kind, None, adjacency)

    def with_rank(self, rank):
        return NodeRecord(self.node_id, self.kind, rank, self.adjacency)

    def __str__(self):
        return dump_record(self)


def _check_int32(value, what):
    if not INT32_MIN <= value <= INT32_MAX:
        raise RecordFormatError('%s out of int32 range: %r' % (what, value))


def encode_record(record):
    """Serialize *record* to bytes."""
    _check_int32(record.node_id, 'node id')

    parts = [_HEADER.pack(record.kind, record.node_id)]

    if record.kind.carries_rank:
        parts.append(_RANK.pack(record.rank))

    if record.kind.carries_adjacency:
        adjacency = np.asarray(record.adjacency, dtype=np.int64)
        if adjacency.size:
            _check_int32(int(adjacency.min()), 'neighbor id')
            _check_int32(int(adjacency.max()), 'neighbor id')
        parts.append(_LENGTH.pack(adjacency.size))
        parts.append(adjacency.astype(_ADJ_DTYPE).tobytes())

    return b''.join(parts)


def _read_exactly(fileobj, size):
    data = fileobj.read(size)
    if len(data) != size:
        raise RecordFormatError(
            'truncated record: wanted %d bytes, got %d' % (size, len(data)))
    return data


def read_record(fileobj):
    """Read the next record from a binary file object, or ``None`` at a
    clean end of file."""
    header = fileobj.read(_HEADER.size)
    if not header:
        return None
    if len(header) != _HEADER.size:
        raise RecordFormatError('truncated record header')

    code, node_id = _HEADER.unpack(header)
    kind = NodeKind.from_code(code)

    rank = None
    if kind.carries_rank:
        (rank,) = _RANK.unpack(_read_exactly(fileobj, _RANK.size))

    adjacency = ()
    if kind.carries_adjacency:
        (length,) = _LENGTH.unpack(_read_exactly(fileobj, _LENGTH.size))
        if length < 0:
            raise RecordFormatError('negative adjacency length: %d' % length)
        data = _read_exactly(fileobj, length * _ADJ_DTYPE.itemsize)
        adjacency = np.frombuffer(data, dtype=_ADJ_DTYPE).tolist()

    return NodeRecord(node_id, kind, rank, adjacency)


def decode_record(data):
    """Deserialize one record from *data*, which must hold exactly one."""
    buf = io.BytesIO(data)
    record = read_record(buf)
    if record is None:
        raise RecordFormatError('empty record')
    if buf.read(1):
        raise RecordFormatError('trailing bytes after record')
    return record


def read_records(path):
    """Yield every record in the file at *path*, in file order."""
    with open(path, 'rb') as f:
        while True:
            record = read_record(f)
            if record is None:
                return
            yield record


def write_records(path, records):
    """Write *records* to *path*, replacing it. Returns the record count."""
    count = 0
    with open(path, 'wb') as f:
        for record in records:
            f.write(encode_record(record))
            count += 1
    return count


def part_file_name(task_num):
    return 'part-%05d' % task_num


def list_part_files(directory):
    """Part files of a job output directory, sorted by name. Anything that
    is not a ``part-*`` file (logs, markers) is ignored."""
    return sorted(p for p in glob.glob(os.path.join(directory, PART_FILE_GLOB))
                  if os.path.isfile(p))


def dump_record(record):
    """Readable form, e.g. ``{7 H -0.6931472 [3, 9]}``."""
    s = '{%d %s' % (record.node_id, record.kind.tag)
    if record.kind.is_structure:
        s += ' S'
    if record.rank is not None:
        s += ' %s' % np.float32(record.rank)
    if record.kind.carries_adjacency:
        s += ' [%s]' % ', '.join(str(n) for n in record.adjacency)
    return s + '}'


class NodeRecordProtocol:
    """mrjob protocol carrying one :py:class:`NodeRecord` per line.

    The key is the node id, zero-padded so that mrjob's byte-wise sort of
    encoded keys agrees with numeric order for non-negative ids. The value
    is the binary record, base64 encoded.
    """

    def read(self, line):
        key, encoded = line.rstrip(b'\r\n').split(b'\t', 1)
        return int(key), decode_record(base64.b64decode(encoded))

    def write(self, key, value):
        return b'%010d\t%s' % (key, base64.b64encode(encode_record(value)))
