"""Options and helpers shared by every job in the HITS pipeline."""
from mrjob.compat import jobconf_from_env
from mrjob.job import MRJob

from schimmy_hits.errors import HitsError
from schimmy_hits.partitioner import make_partitioner
from schimmy_hits.records import NodeRecordProtocol


class HitsJob(MRJob):
    """Base class: node records in, node records out, and the options every
    step needs to agree on (iteration, partitioning, combining)."""

    INPUT_PROTOCOL = NodeRecordProtocol
    INTERNAL_PROTOCOL = NodeRecordProtocol
    OUTPUT_PROTOCOL = NodeRecordProtocol

    def configure_args(self):
        super().configure_args()

        self.add_passthru_arg(
            '--iteration', dest='iteration', default=0, type=int,
            help='iteration being computed; 0 applies the zero-rank default')

        self.add_passthru_arg(
            '--node-count', dest='node_count', default=None, type=int,
            help='number of nodes in the graph (needed by --use-range)')

        self.add_passthru_arg(
            '--num-partitions', dest='num_partitions', default=1, type=int,
            help='number of partitions; must stay the same between iterations')

        self.add_passthru_arg(
            '--use-range', dest='use_range', action='store_true',
            default=False, help='range partitioning instead of hashing')

        self.add_passthru_arg(
            '--use-combiner', dest='use_combiner', action='store_true',
            default=False, help='sum mass in a combiner before the shuffle')

        self.add_passthru_arg(
            '--use-in-mapper-combiner', dest='use_in_mapper_combiner',
            action='store_true', default=False,
            help='sum mass inside each map task before emitting it')

        self.add_passthru_arg(
            '--task-partition', dest='task_partition', default=None,
            type=int, help='partition served by this reduce task')

    def partitioner(self):
        return make_partitioner(self.options.use_range,
                                self.options.node_count)

    def task_partition(self):
        """Partition index of the running reduce task.

        Set explicitly by the local substrate; under mrjob's own runners it
        comes from the task's jobconf.
        """
        if self.options.task_partition is not None:
            return self.options.task_partition

        value = jobconf_from_env('mapreduce.task.partition')
        if value is None:
            raise HitsError('cannot tell which partition this task reduces')
        return int(value)
