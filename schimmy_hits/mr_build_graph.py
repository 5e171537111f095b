"""Build the iteration 0 records from a plain-text adjacency list.

Each input line is ``node neighbor neighbor ...`` with integer ids separated
by whitespace. Every node gets a hub record holding its out-links and an
authority record holding its in-links, both with log rank 0, partitioned and
sorted exactly the way the compute step expects to find them.
"""
import argparse
import logging
import sys

from mrjob.protocol import RawValueProtocol
from mrjob.step import MRStep

from schimmy_hits.driver import iteration_path
from schimmy_hits.errors import HitsError
from schimmy_hits.job import HitsJob
from schimmy_hits.log_config import setup_logging
from schimmy_hits.partitioner import make_partitioner
from schimmy_hits.records import NodeRecord
from schimmy_hits.records import read_records
from schimmy_hits.substrate import LocalSubstrate

log = logging.getLogger(__name__)

INITIAL_RANK = 0.0


def read_stoplist(path):
    """Node ids to drop, one per line."""
    stoplist = set()
    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                stoplist.add(int(line))
            except ValueError:
                raise HitsError('%s:%d: not a node id: %r' % (
                    path, line_num, line))
    return stoplist


def _unique(ids):
    seen = set()
    out = []
    for n in ids:
        if n not in seen:
            seen.add(n)
            out.append(n)
    return out


class MRBuildHitsGraph(HitsJob):

    INPUT_PROTOCOL = RawValueProtocol

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._stoplist = set()

    def configure_args(self):
        super().configure_args()

        self.add_file_arg(
            '--stoplist', dest='stoplist', default=None,
            help='file of node ids (one per line) to leave out of the graph')

    def mapper_init_stoplist(self):
        if self.options.stoplist:
            self._stoplist = read_stoplist(self.options.stoplist)

    def mapper_parse_links(self, _, line):
        """
        Mapper: one line of the adjacency list.
        Input: "node neighbor neighbor ..."
        Output:
            1. (node, HUB_STRUCTURE [neighbors]) for the node's out-links.
            2. (neighbor, AUTH_STRUCTURE [node]) for every out-link, so the
               neighbor learns its in-link (and exists even without a line
               of its own).
        """
        fields = line.split()
        if not fields or fields[0].startswith('#'):
            return

        try:
            ids = [int(field) for field in fields]
        except ValueError:
            self.increment_counter('Error', 'bad adjacency line', 1)
            return

        node_id = ids[0]
        if node_id in self._stoplist:
            return

        links = [n for n in ids[1:] if n not in self._stoplist]

        yield node_id, NodeRecord.structure(node_id, True, links)
        for neighbor in links:
            yield neighbor, NodeRecord.structure(neighbor, False, [node_id])

    def reducer_build_node(self, node_id, fragments):
        """
        Reducer: merge everything known about one node.
        Output: (node, HUB_COMPLETE out-links) and (node, AUTH_COMPLETE
            in-links), each list deduplicated in first-seen order.
        """
        out_links = []
        in_links = []
        for fragment in fragments:
            if fragment.kind.is_hub:
                out_links.extend(fragment.adjacency)
            else:
                in_links.extend(fragment.adjacency)

        yield node_id, NodeRecord.complete(
            node_id, True, INITIAL_RANK, _unique(out_links))
        yield node_id, NodeRecord.complete(
            node_id, False, INITIAL_RANK, _unique(in_links))

    def steps(self):
        return [MRStep(mapper_init=self.mapper_init_stoplist,
                       mapper=self.mapper_parse_links,
                       reducer=self.reducer_build_node)]


def build_graph(input_paths, output_path, num_partitions=1, use_range=False,
                node_count=None, stoplist=None, num_workers=1):
    """Write partitioned iteration 0 records for the adjacency list files
    *input_paths* into *output_path*. Returns the number of nodes."""
    partitioner = make_partitioner(use_range, node_count)
    substrate = LocalSubstrate(num_workers, partitioner)

    args = ['--num-partitions', str(num_partitions)]
    if node_count is not None:
        args += ['--node-count', str(node_count)]
    if use_range:
        args.append('--use-range')
    if stoplist:
        args += ['--stoplist', stoplist]

    output_files = substrate.run_step(
        MRBuildHitsGraph, args, input_paths, output_path,
        num_reducers=num_partitions, text_input=True)

    bad_lines = substrate.counters.get('Error', {}).get(
        'bad adjacency line', 0)
    if bad_lines:
        log.warning('skipped %d unparseable adjacency lines', bad_lines)

    hubs = 0
    for path in output_files:
        hubs += sum(1 for record in read_records(path) if record.kind.is_hub)

    log.info('%d nodes written to %s', hubs, output_path)
    return hubs


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='hits-build-graph',
        description='Build iteration 0 HITS records from an adjacency list.')
    parser.add_argument('input_paths', nargs='+',
                        help='adjacency list file(s)')
    parser.add_argument('--base-path', required=True,
                        help='run directory; iter0000 is created inside it')
    parser.add_argument('--num-partitions', type=int, default=1)
    parser.add_argument('--use-range', action='store_true', default=False)
    parser.add_argument('--node-count', type=int, default=None)
    parser.add_argument('--stoplist', default=None)
    parser.add_argument('--num-workers', type=int, default=1)
    parser.add_argument('--log-level', default='INFO')
    args = parser.parse_args(argv)

    if args.use_range and not args.node_count:
        parser.error('--use-range needs --node-count')
    if args.num_partitions < 1 or args.num_workers < 1:
        parser.error('--num-partitions and --num-workers must be at least 1')

    setup_logging(args.log_level)

    try:
        count = build_graph(
            args.input_paths, iteration_path(args.base_path, 0),
            num_partitions=args.num_partitions, use_range=args.use_range,
            node_count=args.node_count, stoplist=args.stoplist,
            num_workers=args.num_workers)
    except HitsError as e:
        log.error('graph build failed: %s', e)
        return 1

    print(count)
    return 0


if __name__ == '__main__':
    sys.exit(main())
