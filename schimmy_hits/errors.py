"""Exceptions raised by the HITS jobs and driver."""


class HitsError(Exception):
    """Base class for fatal errors; the driver aborts the run on these."""


class RecordFormatError(HitsError):
    """A record could not be encoded or decoded."""


class PartitionAssignmentError(HitsError):
    """The shards of an iteration do not map one-to-one onto partitions."""


class NormalizationError(HitsError):
    """A normalization scalar was missing after the sum-of-squares phase."""


class SchimmyMergeError(HitsError):
    """The message stream and the structure file disagree.

    Raised when the structure file holds a key larger than the message key
    being reduced, when it runs out before a message key is matched, or when
    either stream is not sorted.
    """

    def __init__(self, message, partition=None, key=None, structure_key=None):
        super().__init__(message)
        self.partition = partition
        self.key = key
        self.structure_key = structure_key

    def __str__(self):
        msg = super().__str__()
        return '%s (partition: %s, key: %s, structure key: %s)' % (
            msg, self.partition, self.key, self.structure_key)
