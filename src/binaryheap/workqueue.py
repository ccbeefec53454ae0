from abc import abstractmethod
import datetime
import logging
import threading

from typing import Iterable, override

from prometheus_client.core import REGISTRY, GaugeMetricFamily
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector, CollectorRegistry

from binaryheap.heap import BinaryHeap, key_comparator

def install_workunits_collector( workqueue, registry: CollectorRegistry=REGISTRY ) -> Collector:
    class WorkunitsCollector(Collector):
        def __init__( self, workqueue ):
            self._workqueue = workqueue

        @override
        def collect( self ) -> Iterable[Metric]:
            return [
                GaugeMetricFamily(
                    'workunit_count',
                    'The number of queued work units',
                    value=self._workqueue.size() ) ]

    collector = WorkunitsCollector( workqueue )
    registry.register( collector )
    return collector


class Workunit( object ):
    def __init__( self, dt: datetime.datetime | None ):
        self.dt = dt

    @abstractmethod
    def work( self ):
        pass


class WorkQueue( threading.Thread ):
    """
    Runs each enqueued work unit once its `dt` has passed, earliest first. A work unit
    enqueued while the thread waits on a later one preempts the wait.
    """

    def __init__( self, *args, capacity_hint: int=16, **kwargs ):
        self._heap = BinaryHeap( capacity_hint, key_comparator( lambda x: x.dt ) )
        self._lock = threading.Lock()
        self._interrupted = False
        self._event = threading.Event()
        super().__init__( *args, daemon=True, **kwargs )

    # The event is cleared before the heap is inspected, so an enqueue or stop that happens
    # after the inspection always wakes the wait
    def _wait_for_event( self ):
        self._event.clear()
        with self._lock:
            empty = self._heap.is_empty()
        if empty:
            # Wait for the heap to be non-empty
            if self._interrupted:
                return

            self._event.wait()

            with self._lock:
                assert not self._heap.is_empty() or self._interrupted
                if self._interrupted:
                    return

        while True:
            self._event.clear()
            if self._interrupted:
                return
            with self._lock:
                assert not self._heap.is_empty()
                workunit = self._heap.peek()

                # The work unit could be in the past or future. If it's in the future, we must wait!
                delta = workunit.dt - datetime.datetime.now()
                wait_time = delta.total_seconds()

            if wait_time <= 0:
                return

            # An earlier work unit enqueued meanwhile sets the event and is peeked next time
            self._event.wait( timeout=wait_time )
            if self._interrupted:
                return

    @override
    def run( self ):
        while not self._interrupted:
            try:
                self._wait_for_event()
                if self._interrupted:
                    return

                with self._lock:
                    workunit = self._heap.extract_min()
                workunit.work()

            except Exception as e:
                logging.exception( e )

    def enqueue( self, workunit: Workunit ):
        if workunit.dt is None:
            logging.debug( "ignoring a work unit with no due time" )
            return

        with self._lock:
            self._heap.insert( workunit )

        self._event.set()

    def stop( self ):
        self._interrupted = True
        self._event.set()

    def size( self ) -> int:
        with self._lock:
            return self._heap.size()
