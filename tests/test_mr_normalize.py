import math
import os

import pytest

from schimmy_hits.errors import HitsError
from schimmy_hits.errors import NormalizationError
from schimmy_hits.mr_normalize import MRNormalizeRanks
from schimmy_hits.mr_normalize import MRNormalizeSums
from schimmy_hits.mr_normalize import read_root_sums
from schimmy_hits.records import NodeRecord

RECORDS = [
    NodeRecord.complete(1, True, math.log(2), [2]),
    NodeRecord.complete(1, False, 0.0, []),
    NodeRecord.complete(2, True, math.log(2), [3]),
    NodeRecord.complete(2, False, math.log(2), [1]),
    NodeRecord.complete(3, True, 0.0, []),
    NodeRecord.complete(3, False, math.log(2), [2]),
]


def sums_of(job, records):
    pairs = sorted(job.map_pairs((r.node_id, r) for r in records),
                   key=lambda kv: kv[0])
    if job.steps()[0]['combiner'] is not None:
        pairs = list(job.combine_pairs(pairs))
    return dict(job.reduce_pairs(sorted(pairs, key=lambda kv: kv[0])))


@pytest.mark.parametrize('args', [
    [], ['--use-combiner'], ['--use-in-mapper-combiner'],
    ['--use-combiner', '--use-in-mapper-combiner'],
])
def test_sum_of_squares(args):
    sums = sums_of(MRNormalizeSums(args=args), RECORDS)

    # hub: 2^2 + 2^2 + 1^2, authority: 1^2 + 2^2 + 2^2
    assert sums['H'] == pytest.approx(math.log(9), rel=1e-5)
    assert sums['A'] == pytest.approx(math.log(9), rel=1e-5)


def test_mapper_squares_in_log_domain():
    job = MRNormalizeSums(args=[])
    out = list(job.map_pairs([(1, RECORDS[0])]))
    assert out == [('H', pytest.approx(2 * math.log(2), rel=1e-6))]


def test_all_neg_inf_role_writes_nothing():
    records = [NodeRecord.complete(1, True, 0.0),
               NodeRecord.complete(1, False, float('-inf'))]
    assert sums_of(MRNormalizeSums(args=[]), records) == {'H': 0.0}


def test_scale_divides_by_root():
    job = MRNormalizeRanks(args=['--root-sum-h', repr(math.log(9)),
                                 '--root-sum-a', repr(math.log(4))])
    out = list(job.map_pairs((r.node_id, r) for r in RECORDS[:2]))

    hub = out[0][1]
    auth = out[1][1]
    assert math.exp(hub.rank) == pytest.approx(2.0 / 3, rel=1e-5)
    assert hub.adjacency == (2,)
    assert math.exp(auth.rank) == pytest.approx(0.5, rel=1e-5)


def test_scale_without_root_sum():
    job = MRNormalizeRanks(args=['--root-sum-h', '0.0'])

    with pytest.raises(NormalizationError):
        list(job.map_pairs([(1, RECORDS[1])]))


def test_normalize_rejects_messages():
    job = MRNormalizeSums(args=[])
    with pytest.raises(HitsError):
        list(job.map_pairs([(1, NodeRecord.mass(1, True, 0.0))]))


def write_sums(tmp_path, text):
    with open(os.path.join(str(tmp_path), 'part-00000'), 'w') as f:
        f.write(text)
    return str(tmp_path)


def test_read_root_sums(tmp_path):
    directory = write_sums(tmp_path, '"A"\t1.5\n"H"\t-0.25\n')
    assert read_root_sums(directory) == (-0.25, 1.5)


def test_read_root_sums_missing_authority(tmp_path):
    directory = write_sums(tmp_path, '"H"\t0.5\n')

    with pytest.raises(NormalizationError) as excinfo:
        read_root_sums(directory)
    assert 'rootSumA' in str(excinfo.value)


def test_read_root_sums_missing_both(tmp_path):
    with pytest.raises(NormalizationError) as excinfo:
        read_root_sums(write_sums(tmp_path, ''))
    assert 'rootSumH' in str(excinfo.value)
