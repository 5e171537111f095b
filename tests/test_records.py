import io
import struct

import numpy as np
import pytest

from schimmy_hits.errors import RecordFormatError
from schimmy_hits.records import NodeKind
from schimmy_hits.records import NodeRecord
from schimmy_hits.records import NodeRecordProtocol
from schimmy_hits.records import decode_record
from schimmy_hits.records import dump_record
from schimmy_hits.records import encode_record
from schimmy_hits.records import list_part_files
from schimmy_hits.records import part_file_name
from schimmy_hits.records import read_record
from schimmy_hits.records import read_records
from schimmy_hits.records import write_records

ONE_OF_EACH = [
    NodeRecord.complete(7, True, -0.6931472, [3, 9]),
    NodeRecord.complete(7, False, 0.0, []),
    NodeRecord.mass(12, True, -1.5),
    NodeRecord.mass(0, False, float('-inf')),
    NodeRecord.structure(2 ** 31 - 1, True, [1, 2, 3]),
    NodeRecord.structure(5, False, [-4]),
]


@pytest.mark.parametrize('record', ONE_OF_EACH,
                         ids=lambda r: r.kind.name)
def test_binary_round_trip(record):
    assert decode_record(encode_record(record)) == record


def test_layout_is_big_endian():
    data = encode_record(NodeRecord.complete(258, True, 1.0, [1, 2]))
    assert data == (struct.pack('>bi', 1, 258) + struct.pack('>f', 1.0) +
                    struct.pack('>i', 2) + struct.pack('>ii', 1, 2))

    mass = encode_record(NodeRecord.mass(1, False, 0.5))
    assert mass == struct.pack('>bif', 4, 1, 0.5)

    structure = encode_record(NodeRecord.structure(1, False, []))
    assert structure == struct.pack('>bii', 6, 1, 0)


def test_kind_codes():
    assert [kind.value for kind in NodeKind] == [1, 2, 3, 4, 5, 6]
    assert NodeKind.HUB_MASS.is_hub and NodeKind.HUB_MASS.is_mass
    assert NodeKind.AUTH_STRUCTURE.is_authority
    assert NodeKind.AUTH_STRUCTURE.carries_adjacency
    assert not NodeKind.AUTH_STRUCTURE.carries_rank
    assert NodeKind.HUB_COMPLETE.tag == 'H'
    assert NodeKind.AUTH_COMPLETE.tag == 'A'


def test_unknown_kind():
    with pytest.raises(RecordFormatError):
        decode_record(struct.pack('>bif', 9, 1, 0.0))

    with pytest.raises(RecordFormatError):
        NodeRecord(1, 0, 0.0)


def test_truncated_record():
    data = encode_record(NodeRecord.complete(3, True, 0.0, [1, 2, 3]))

    for cut in (2, 6, 9, len(data) - 1):
        with pytest.raises(RecordFormatError):
            decode_record(data[:cut])


def test_trailing_bytes():
    data = encode_record(NodeRecord.mass(3, True, 0.0))
    with pytest.raises(RecordFormatError):
        decode_record(data + b'\x00')


def test_node_id_out_of_range():
    with pytest.raises(RecordFormatError):
        encode_record(NodeRecord.mass(2 ** 31, True, 0.0))

    with pytest.raises(RecordFormatError):
        encode_record(NodeRecord.structure(1, True, [-2 ** 31 - 1]))


def test_fields_normalized_by_kind():
    structure = NodeRecord(4, NodeKind.HUB_STRUCTURE, 1.0, [1])
    assert structure.rank is None
    assert structure.adjacency == (1,)

    mass = NodeRecord(4, NodeKind.AUTH_MASS, 1.0, [1, 2])
    assert mass.adjacency == ()

    assert NodeRecord.complete(1, True, 0.1).rank == float(np.float32(0.1))

    with pytest.raises(RecordFormatError):
        NodeRecord(1, NodeKind.HUB_COMPLETE, None)


def test_with_rank_keeps_structure():
    record = NodeRecord.complete(1, False, 0.0, [5, 6])
    moved = record.with_rank(-1.0)
    assert moved == NodeRecord.complete(1, False, -1.0, [5, 6])


def test_read_record_at_eof():
    assert read_record(io.BytesIO(b'')) is None


def test_file_round_trip(tmp_path):
    path = str(tmp_path / part_file_name(0))
    assert write_records(path, ONE_OF_EACH) == len(ONE_OF_EACH)
    assert list(read_records(path)) == ONE_OF_EACH


def test_list_part_files(tmp_path):
    for name in ('part-00001', 'part-00000', '_SUCCESS', '.part-00000.crc'):
        (tmp_path / name).write_bytes(b'')
    (tmp_path / 'part-logs').mkdir()

    assert [p.rsplit('/', 1)[-1] for p in list_part_files(str(tmp_path))] == [
        'part-00000', 'part-00001']


def test_dump_record():
    assert dump_record(NodeRecord.complete(7, True, -0.5, [3, 9])) == \
        '{7 H -0.5 [3, 9]}'
    assert dump_record(NodeRecord.mass(7, False, 0.0)) == '{7 A 0.0}'
    assert dump_record(NodeRecord.structure(7, False, [1])) == '{7 A S [1]}'
    assert str(NodeRecord.structure(7, True, [])) == '{7 H S []}'


def test_protocol_round_trip():
    protocol = NodeRecordProtocol()
    record = NodeRecord.complete(42, True, -2.0, [1, 2])

    line = protocol.write(42, record)
    assert line.startswith(b'0000000042\t')
    assert protocol.read(line) == (42, record)


def test_protocol_keys_sort_numerically():
    protocol = NodeRecordProtocol()
    lines = [protocol.write(n, NodeRecord.mass(n, True, 0.0))
             for n in (100, 9, 1000, 10)]
    assert [protocol.read(line)[0] for line in sorted(lines)] == [
        9, 10, 100, 1000]
