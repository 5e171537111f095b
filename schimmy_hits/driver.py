"""Driver for the Schimmy version of Kleinberg's Hubs and Authorities (HITS).

Each iteration ``i`` reads the node records of ``base/iter<i>``, runs the
compute step into the temporary ``base/iter<i+1>t``, and normalizes that
into ``base/iter<i+1>``. Starting at 0 and ending at 10 reads
``base/iter0000`` and leaves the final scores in ``base/iter0010``.
"""
import argparse
import logging
import os
import shutil
import sys
import time
from collections import namedtuple

from schimmy_hits.errors import HitsError
from schimmy_hits.log_config import setup_logging
from schimmy_hits.mr_hits_schimmy import MRHitsSchimmy
from schimmy_hits.mr_normalize import MRNormalizeRanks
from schimmy_hits.mr_normalize import MRNormalizeSums
from schimmy_hits.mr_normalize import read_root_sums
from schimmy_hits.partitioner import PartitionAssignment
from schimmy_hits.partitioner import make_partitioner
from schimmy_hits.records import list_part_files
from schimmy_hits.substrate import LocalSubstrate

log = logging.getLogger(__name__)

SUMS_DIR = 'sqrt'


class HitsConfig(namedtuple('HitsConfig', [
        'base_path', 'node_count', 'use_combiner', 'use_in_mapper_combiner',
        'use_range', 'num_workers', 'num_partitions', 'basic',
        'keep_temp'])):
    __slots__ = ()

    def __new__(cls, base_path, node_count=None, use_combiner=False,
                use_in_mapper_combiner=False, use_range=False, num_workers=1,
                num_partitions=1, basic=False, keep_temp=False):
        return super().__new__(
            cls, base_path, node_count, use_combiner, use_in_mapper_combiner,
            use_range, num_workers, num_partitions, basic, keep_temp)


def iteration_path(base_path, iteration, temporary=False):
    name = 'iter%04d' % iteration
    if temporary:
        name += 't'
    return os.path.join(base_path, name)


class HitsDriver:

    def __init__(self, config, substrate=None):
        self.config = config
        self.partitioner = make_partitioner(config.use_range,
                                            config.node_count)
        self.substrate = substrate or LocalSubstrate(config.num_workers,
                                                     self.partitioner)

    def _job_args(self, iteration):
        args = ['--iteration', str(iteration),
                '--num-partitions', str(self.config.num_partitions)]
        if self.config.node_count is not None:
            args += ['--node-count', str(self.config.node_count)]
        if self.config.use_range:
            args.append('--use-range')
        if self.config.use_combiner:
            args.append('--use-combiner')
        if self.config.use_in_mapper_combiner:
            args.append('--use-in-mapper-combiner')
        return args

    def run(self, start, end):
        config = self.config
        log.info('Tool name: HubsAndAuthoritiesSchimmy')
        log.info(' - base dir: %s', config.base_path)
        log.info(' - node count: %s', config.node_count)
        log.info(' - start iteration: %d', start)
        log.info(' - end iteration: %d', end)
        log.info(' - useCombiner: %s', config.use_combiner)
        log.info(' - useInmapCombiner: %s', config.use_in_mapper_combiner)
        log.info(' - useRange: %s', config.use_range)
        log.info(' - number of workers: %d', config.num_workers)
        log.info(' - number of partitions: %d', config.num_partitions)
        log.info(' - schimmy: %s', not config.basic)

        for i in range(start, end):
            self.iterate(i)

        return iteration_path(config.base_path, end)

    def iterate(self, iteration):
        start_time = time.time()
        self.compute(iteration)
        self.normalize(iteration)
        log.info('Iteration %d finished in %.3f seconds', iteration,
                 time.time() - start_time)

    def partition_assignment(self, path):
        """Work out which shard of *path* backs which partition."""
        assignment = PartitionAssignment.from_shards(
            path, self.partitioner, self.config.num_partitions)
        assignment.check(self.config.num_partitions)
        return assignment

    def compute(self, iteration):
        """Mass propagation plus merge: ``iter<i>`` -> ``iter<i+1>t``."""
        input_path = iteration_path(self.config.base_path, iteration)
        output_path = iteration_path(self.config.base_path, iteration + 1,
                                     temporary=True)

        input_files = list_part_files(input_path)
        if not input_files:
            raise HitsError('no part files in %s' % input_path)

        args = self._job_args(iteration)
        if self.config.basic:
            args.append('--basic')
        else:
            assignment = self.partition_assignment(input_path)
            log.info('partition mapping: %r', assignment)
            args += ['--partition-mapping', assignment.to_json()]

        self.substrate.run_step(MRHitsSchimmy, args, input_files, output_path,
                                num_reducers=self.config.num_partitions)
        return output_path

    def normalize(self, iteration):
        """L2-normalize ``iter<i+1>t`` into ``iter<i+1>``."""
        base_path = self.config.base_path
        input_path = iteration_path(base_path, iteration + 1, temporary=True)
        output_path = iteration_path(base_path, iteration + 1)
        sums_path = os.path.join(base_path, SUMS_DIR)

        input_files = list_part_files(input_path)
        args = self._job_args(iteration)

        self.substrate.run_step(MRNormalizeSums, args, input_files, sums_path,
                                num_reducers=1, text_output=True)

        root_sum_h, root_sum_a = read_root_sums(sums_path)
        log.info(' - rootSumH: %r', root_sum_h)
        log.info(' - rootSumA: %r', root_sum_a)

        args += ['--root-sum-h=%r' % root_sum_h, '--root-sum-a=%r' % root_sum_a]
        self.substrate.run_step(MRNormalizeRanks, args, input_files,
                                output_path)

        if not self.config.keep_temp:
            shutil.rmtree(input_path)
            shutil.rmtree(sums_path)

        return output_path


def _flag(value):
    if value not in ('0', '1'):
        raise argparse.ArgumentTypeError('expected 0 or 1, got %r' % value)
    return value == '1'


def _make_arg_parser():
    parser = argparse.ArgumentParser(
        prog='hits-schimmy',
        description='Run HITS iterations with Schimmy merge-joins.')

    parser.add_argument('base_path', help='directory holding iterNNNN dirs')
    parser.add_argument('node_count', type=int,
                        help='number of nodes in the graph')
    parser.add_argument('start', type=int, help='starting iteration')
    parser.add_argument('end', type=int, help='ending iteration')
    parser.add_argument('use_combiner', type=_flag,
                        help='1 to use a combiner, 0 for not')
    parser.add_argument('use_in_mapper_combiner', type=_flag,
                        help='1 for in-mapper combining, 0 for not')
    parser.add_argument('use_range', type=_flag,
                        help='1 for range partitioning, 0 for hashing')
    parser.add_argument('num_workers', type=int,
                        help='number of worker threads')
    parser.add_argument('num_partitions', type=int,
                        help='number of partitions; keep it constant'
                             ' between iterations')

    parser.add_argument('--basic', action='store_true', default=False,
                        help='shuffle adjacency lists instead of Schimmy')
    parser.add_argument('--keep-temp', action='store_true', default=False,
                        help="don't delete iterNNNNt and sqrt directories")
    parser.add_argument('--log-level', default='INFO',
                        help='logging level (default: INFO)')
    return parser


def main(argv=None):
    parser = _make_arg_parser()
    args = parser.parse_args(argv)

    if args.num_workers < 1:
        parser.error('num_workers must be at least 1')
    if args.num_partitions < 1:
        parser.error('num_partitions must be at least 1')
    if args.node_count < 1:
        parser.error('node_count must be at least 1')
    if args.start > args.end:
        parser.error('start iteration is after end iteration')

    setup_logging(args.log_level)

    config = HitsConfig(
        base_path=args.base_path,
        node_count=args.node_count,
        use_combiner=args.use_combiner,
        use_in_mapper_combiner=args.use_in_mapper_combiner,
        use_range=args.use_range,
        num_workers=args.num_workers,
        num_partitions=args.num_partitions,
        basic=args.basic,
        keep_temp=args.keep_temp)

    try:
        HitsDriver(config).run(args.start, args.end)
    except HitsError as e:
        log.error('HITS run failed: %s', e)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
