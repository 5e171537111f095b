"""Report the nodes with the highest hub or authority scores."""
import argparse
import heapq
import math
import shutil
import sys
import tempfile

from mrjob.protocol import JSONProtocol
from mrjob.step import MRStep

from schimmy_hits.job import HitsJob
from schimmy_hits.log_config import setup_logging
from schimmy_hits.records import dump_record
from schimmy_hits.records import list_part_files
from schimmy_hits.records import read_records
from schimmy_hits.substrate import LocalSubstrate

ROLES = ('hub', 'authority')

# every mapper sends its candidates to the same reducer under this key
_TOP_KEY = 'top'


def _order(node_id, rank):
    # highest rank first, lowest id first on ties
    return rank, -node_id


class MRTopNodes(HitsJob):

    INTERNAL_PROTOCOL = JSONProtocol
    OUTPUT_PROTOCOL = JSONProtocol

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._heap = []

    def configure_args(self):
        super().configure_args()

        self.add_passthru_arg(
            '--top-n', dest='top_n', default=100, type=int,
            help='number of nodes to report')

        self.add_passthru_arg(
            '--role', dest='role', default='authority', choices=ROLES,
            help='rank by hub or by authority score')

    def mapper_init_heap(self):
        self._heap = []

    def mapper_keep_top(self, _, node):
        """Keep the task's best --top-n records of the chosen role."""
        if not node.kind.is_complete:
            return
        if node.kind.is_hub != (self.options.role == 'hub'):
            return

        heapq.heappush(self._heap, (_order(node.node_id, node.rank),
                                    node.node_id, node.rank))
        if len(self._heap) > self.options.top_n:
            heapq.heappop(self._heap)

    def mapper_final_emit_top(self):
        for _, node_id, rank in self._heap:
            yield _TOP_KEY, [node_id, rank]

    def reducer_merge_top(self, _, candidates):
        best = heapq.nlargest(self.options.top_n, candidates,
                              key=lambda c: _order(c[0], c[1]))
        for node_id, rank in best:
            yield node_id, rank

    def steps(self):
        return [MRStep(mapper_init=self.mapper_init_heap,
                       mapper=self.mapper_keep_top,
                       mapper_final=self.mapper_final_emit_top,
                       reducer=self.reducer_merge_top)]


def top_nodes(iteration_path, n=100, role='authority', num_workers=1):
    """``[(node_id, log_rank), ...]`` for the *n* best nodes of *role* in
    *iteration_path*, best first."""
    substrate = LocalSubstrate(num_workers)
    work_dir = tempfile.mkdtemp(prefix='hits-top-')
    protocol = JSONProtocol()

    try:
        paths = substrate.run_step(
            MRTopNodes, ['--top-n', str(n), '--role', role],
            list_part_files(iteration_path), work_dir, text_output=True)

        results = []
        for path in paths:
            with open(path, 'rb') as f:
                for line in f:
                    node_id, rank = protocol.read(line.rstrip(b'\r\n'))
                    results.append((node_id, rank))
        return results
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='hits-top',
        description='Print the top hub or authority nodes of an iteration.')
    parser.add_argument('iteration_path', help='an iterNNNN directory')
    parser.add_argument('--top', type=int, default=10)
    parser.add_argument('--role', choices=ROLES, default='authority')
    parser.add_argument('--dump', action='store_true', default=False,
                        help='print every record instead of the top nodes')
    parser.add_argument('--log-level', default='WARNING')
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    if args.dump:
        for path in list_part_files(args.iteration_path):
            for record in read_records(path):
                print(dump_record(record))
        return 0

    for node_id, rank in top_nodes(args.iteration_path, args.top, args.role):
        print('%d\t%.6f\t%.6g' % (node_id, rank, math.exp(rank)))
    return 0


if __name__ == '__main__':
    sys.exit(main())
