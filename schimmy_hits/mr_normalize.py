"""L2 normalization of hub and authority ranks, in two jobs.

:py:class:`MRNormalizeSums` reduces every rank to two scalars, the log of
the sum of squared hub ranks and of squared authority ranks.
:py:class:`MRNormalizeRanks` then divides every rank by the matching root
(a subtraction, since ranks are logs). The second job needs the output of
the first, so they always run one after the other.
"""
from mrjob.protocol import JSONProtocol
from mrjob.step import MRStep

from schimmy_hits.errors import HitsError
from schimmy_hits.errors import NormalizationError
from schimmy_hits.job import HitsJob
from schimmy_hits.logmath import NEG_INF
from schimmy_hits.logmath import sum_all_log_probs
from schimmy_hits.logmath import sum_log_probs
from schimmy_hits.logmath import to_float32
from schimmy_hits.records import list_part_files

HUB = 'H'
AUTHORITY = 'A'


def _check_complete(node):
    if not node.kind.is_complete:
        raise HitsError('node %d: cannot normalize a %s record' % (
            node.node_id, node.kind.name))


class MRNormalizeSums(HitsJob):

    INTERNAL_PROTOCOL = JSONProtocol
    OUTPUT_PROTOCOL = JSONProtocol

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._sums = None

    def mapper_square(self, _, node):
        """
        Mapper: square a rank.
        Input: a complete hub or authority record.
        Output: ('H' or 'A', 2 * rank), i.e. log(linear rank ** 2).
        """
        _check_complete(node)
        yield node.kind.tag, to_float32(node.rank * 2)

    def mapper_init_sum(self):
        self._sums = {HUB: NEG_INF, AUTHORITY: NEG_INF}

    def mapper_sum_squares(self, _, node):
        """Mapper with in-mapper combining: keep one running sum per role."""
        _check_complete(node)
        tag = node.kind.tag
        self._sums[tag] = sum_log_probs(self._sums[tag], node.rank * 2)

    def mapper_final_sum(self):
        for tag in (HUB, AUTHORITY):
            if self._sums[tag] != NEG_INF:
                yield tag, self._sums[tag]

    def combiner_sum(self, tag, squares):
        total = sum_all_log_probs(squares)

        if total != NEG_INF:
            yield tag, total

    def reducer_sum(self, tag, squares):
        """
        Reducer: log of the sum of squares for one role. Nothing is written
        for a role whose every rank is -inf; the driver treats that as
        fatal.
        """
        total = sum_all_log_probs(squares)
        if total != NEG_INF:
            yield tag, total

    def steps(self):
        step = dict(mapper=self.mapper_square, reducer=self.reducer_sum)

        if self.options.use_in_mapper_combiner:
            step['mapper_init'] = self.mapper_init_sum
            step['mapper'] = self.mapper_sum_squares
            step['mapper_final'] = self.mapper_final_sum

        if self.options.use_combiner:
            step['combiner'] = self.combiner_sum

        return [MRStep(**step)]


class MRNormalizeRanks(HitsJob):

    def configure_args(self):
        super().configure_args()

        self.add_passthru_arg(
            '--root-sum-h', dest='root_sum_h', default=None, type=float,
            help='log of the sum of squared hub ranks')

        self.add_passthru_arg(
            '--root-sum-a', dest='root_sum_a', default=None, type=float,
            help='log of the sum of squared authority ranks')

    def mapper_scale(self, _, node):
        """
        Mapper: divide a rank by the L2 norm of its role.
        Input: a complete hub or authority record.
        Output: the same record with rank - rootSum / 2.
        """
        _check_complete(node)

        if node.kind.is_hub:
            root_sum = self.options.root_sum_h
        else:
            root_sum = self.options.root_sum_a

        if root_sum is None:
            raise NormalizationError('no root sum given for %s ranks' %
                                     node.kind.tag)

        yield node.node_id, node.with_rank(node.rank - root_sum / 2)

    def steps(self):
        return [MRStep(mapper=self.mapper_scale)]


def read_root_sums(directory):
    """Read ``(rootSumH, rootSumA)`` from the output of
    :py:class:`MRNormalizeSums`."""
    protocol = JSONProtocol()
    sums = {}

    for path in list_part_files(directory):
        with open(path, 'rb') as f:
            for line in f:
                line = line.rstrip(b'\r\n')
                if not line:
                    continue
                tag, value = protocol.read(line)
                if tag not in (HUB, AUTHORITY):
                    raise NormalizationError('unexpected key %r in %s' % (
                        tag, path))
                sums[tag] = value

    for tag in (HUB, AUTHORITY):
        if tag not in sums:
            raise NormalizationError(
                'missing root sum %s in %s' % (
                    'rootSumH' if tag == HUB else 'rootSumA', directory))

    return sums[HUB], sums[AUTHORITY]


if __name__ == '__main__':
    MRNormalizeSums.run()
