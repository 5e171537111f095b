"""Node id -> partition index, and partition index -> structure file.

The compute step only works if the partitioner that routes messages is the
same one that laid out the structure files, so one partitioner instance is
built per run and handed to every step.
"""
import json
import logging

from schimmy_hits.errors import PartitionAssignmentError
from schimmy_hits.records import list_part_files
from schimmy_hits.records import read_records

log = logging.getLogger(__name__)


class HashPartitioner:
    """``hash(node_id) mod total``; an int key hashes to itself with the
    sign bit masked off."""

    def partition(self, node_id, num_partitions):
        return (node_id & 0x7fffffff) % num_partitions

    def __repr__(self):
        return 'HashPartitioner()'


class RangePartitioner:
    """Contiguous id ranges: ``floor(node_id / node_count * total) mod total``.

    Needs the node count up front. Computed with integer arithmetic so ids
    on a range boundary never flip partitions through float rounding.
    """

    def __init__(self, node_count):
        if node_count is None or node_count <= 0:
            raise ValueError('range partitioning needs a positive node count,'
                             ' got %r' % (node_count,))
        self.node_count = node_count

    def partition(self, node_id, num_partitions):
        return (node_id * num_partitions // self.node_count) % num_partitions

    def __repr__(self):
        return 'RangePartitioner(node_count=%d)' % self.node_count


def make_partitioner(use_range=False, node_count=None):
    if use_range:
        return RangePartitioner(node_count)
    return HashPartitioner()


class PartitionAssignment:
    """Which structure file backs which partition, for one iteration.

    Shard file names say nothing about their partition, so the assignment is
    rebuilt every iteration by peeking at the first record of each shard
    (:py:meth:`from_shards`) and passed explicitly to the reduce tasks.
    """

    def __init__(self, paths=None, num_shards=None):
        self._paths = {int(p): path for p, path in (paths or {}).items()}
        self.num_shards = num_shards

    @classmethod
    def from_shards(cls, directory, partitioner, num_partitions):
        paths = {}
        shards = list_part_files(directory)

        for path in shards:
            first = next(iter(read_records(path)), None)
            if first is None:
                log.debug('%s is empty; it backs no partition', path)
                continue

            partition = partitioner.partition(first.node_id, num_partitions)
            if partition in paths:
                raise PartitionAssignmentError(
                    'partition %d claimed by both %s and %s' % (
                        partition, paths[partition], path))

            log.info('%s\t%d', path, partition)
            paths[partition] = path

        return cls(paths, len(shards))

    def path_for(self, partition):
        """Structure file for *partition*, or ``None`` if no shard holds
        any of its nodes."""
        if partition in self._paths:
            return self._paths[partition]
        return None

    def check(self, num_partitions):
        """Every shard must back one of *num_partitions* partitions, one
        shard per partition (empty shards included)."""
        if self.num_shards is not None and self.num_shards != num_partitions:
            raise PartitionAssignmentError(
                '%d shards for %d partitions; the graph was partitioned'
                ' differently' % (self.num_shards, num_partitions))

        for partition in self._paths:
            if not 0 <= partition < num_partitions:
                raise PartitionAssignmentError(
                    'partition %d out of range for %d partitions' % (
                        partition, num_partitions))

    def to_json(self):
        return json.dumps({str(p): path
                           for p, path in sorted(self._paths.items())})

    @classmethod
    def from_json(cls, text):
        return cls(json.loads(text))

    def items(self):
        return sorted(self._paths.items())

    def __len__(self):
        return len(self._paths)

    def __eq__(self, other):
        return (isinstance(other, PartitionAssignment) and
                self._paths == other._paths)

    def __repr__(self):
        return 'PartitionAssignment(%r)' % dict(self.items())
