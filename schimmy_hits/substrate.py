"""In-process sort-and-shuffle for running the HITS jobs locally.

Runs one mrjob step the way a cluster would: one map task per input file,
an optional combiner over each map task's output, a partitioner routing every
key to exactly one reduce task, and each reduce task seeing its keys in
ascending order. Tasks of a phase run on a thread pool; the map phase
finishes completely before any reduce task starts.
"""
import io
import logging
import os
import shutil
import time
from concurrent.futures import ThreadPoolExecutor
from operator import itemgetter

from mrjob.parse import parse_mr_job_stderr

from schimmy_hits.partitioner import HashPartitioner
from schimmy_hits.records import part_file_name
from schimmy_hits.records import read_records
from schimmy_hits.records import write_records

log = logging.getLogger(__name__)

_by_key = itemgetter(0)


def read_record_pairs(path):
    for record in read_records(path):
        yield record.node_id, record


class LocalSubstrate:

    def __init__(self, num_workers=1, partitioner=None):
        if num_workers < 1:
            raise ValueError('need at least one worker, got %r' % num_workers)
        self.num_workers = num_workers
        self.partitioner = partitioner or HashPartitioner()
        # counters of the last step run, as {group: {counter: amount}}
        self.counters = {}

    def run_step(self, job_class, job_args, input_paths, output_dir,
                 num_reducers=1, step_num=0, text_input=False,
                 text_output=False):
        """Run step *step_num* of *job_class* over *input_paths*.

        Each task gets its own job instance built from *job_args*; reduce
        tasks also get ``--task-partition``. Output goes to
        ``output_dir/part-NNNNN``, one file per reduce task (or per map task
        for a map-only step). *output_dir* is replaced, and removed again if
        any task fails. Returns the output paths; the counters the tasks
        incremented are summed into :py:attr:`counters`.

        Node record files are read and written in the binary record layout;
        *text_input* / *text_output* switch to lines in the job's own input
        and output protocols.
        """
        job_args = list(job_args)
        step = job_class(args=job_args).steps()[step_num]
        map_only = step['reducer'] is None and step['reducer_init'] is None

        if os.path.exists(output_dir):
            shutil.rmtree(output_dir)
        os.makedirs(output_dir)

        log.info('Job: %s step %d', job_class.__name__, step_num)
        log.info(' - input files: %d', len(input_paths))
        log.info(' - output path: %s', output_dir)
        log.info(' - number of reducers: %s',
                 'map-only' if map_only else num_reducers)

        start_time = time.time()
        counters = {}
        try:
            with ThreadPoolExecutor(max_workers=self.num_workers) as pool:
                map_futures = [
                    pool.submit(self._map_task, job_class, job_args, step_num,
                                path, text_input)
                    for path in input_paths]
                # barrier: every map task is done before anything is reduced
                map_outputs = []
                for f in map_futures:
                    pairs, stderr = f.result()
                    parse_mr_job_stderr(stderr, counters=counters)
                    map_outputs.append(pairs)

                if map_only:
                    output_paths = [
                        self._write(job_class(args=job_args), output_dir,
                                    task_num, pairs, text_output)
                        for task_num, pairs in enumerate(map_outputs)]
                else:
                    shuffled = self._shuffle(map_outputs, num_reducers)
                    reduce_futures = [
                        pool.submit(self._reduce_task, job_class, job_args,
                                    step_num, partition, pairs, output_dir,
                                    text_output)
                        for partition, pairs in enumerate(shuffled)]
                    output_paths = []
                    for f in reduce_futures:
                        path, stderr = f.result()
                        parse_mr_job_stderr(stderr, counters=counters)
                        output_paths.append(path)
        except Exception:
            shutil.rmtree(output_dir, ignore_errors=True)
            raise

        self.counters = counters
        log.info('Job Finished in %.3f seconds', time.time() - start_time)
        for group, group_counters in sorted(counters.items()):
            for name, amount in sorted(group_counters.items()):
                log.info(' - counter %s: %s = %d', group, name, amount)

        return output_paths

    def _read(self, job, path, text_input):
        if not text_input:
            return read_record_pairs(path)
        return self._read_lines(job.input_protocol(), path)

    def _read_lines(self, protocol, path):
        with open(path, 'rb') as f:
            for line in f:
                yield protocol.read(line.rstrip(b'\r\n'))

    def _task_job(self, job_class, job_args):
        # counter and status lines go to the job's own buffer, not our stderr
        job = job_class(args=job_args)
        stderr = io.BytesIO()
        job.sandbox(stderr=stderr)
        return job, stderr

    def _map_task(self, job_class, job_args, step_num, path, text_input):
        job, stderr = self._task_job(job_class, job_args)
        pairs = list(job.map_pairs(self._read(job, path, text_input),
                                   step_num))

        log.debug('map %s: %d pairs', path, len(pairs))

        if job.steps()[step_num]['combiner'] is not None:
            pairs.sort(key=_by_key)
            pairs = list(job.combine_pairs(pairs, step_num))
            log.debug('map %s: %d pairs after combining', path, len(pairs))

        return pairs, stderr.getvalue()

    def _shuffle(self, map_outputs, num_reducers):
        partitions = [[] for _ in range(num_reducers)]

        for pairs in map_outputs:
            for key, value in pairs:
                if num_reducers == 1:
                    partition = 0
                else:
                    partition = self.partitioner.partition(key, num_reducers)
                partitions[partition].append((key, value))

        # stable, so values keep map task order within a key
        for pairs in partitions:
            pairs.sort(key=_by_key)

        return partitions

    def _reduce_task(self, job_class, job_args, step_num, partition, pairs,
                     output_dir, text_output):
        job, stderr = self._task_job(
            job_class, job_args + ['--task-partition', str(partition)])
        log.debug('reduce partition %d: %d pairs', partition, len(pairs))
        path = self._write(job, output_dir, partition,
                           job.reduce_pairs(pairs, step_num), text_output)
        return path, stderr.getvalue()

    def _write(self, job, output_dir, task_num, pairs, text_output):
        path = os.path.join(output_dir, part_file_name(task_num))

        if not text_output:
            write_records(path, (value for _, value in pairs))
            return path

        protocol = job.output_protocol()

        with open(path, 'wb') as f:
            for key, value in pairs:
                f.write(protocol.write(key, value) + b'\n')
        return path
