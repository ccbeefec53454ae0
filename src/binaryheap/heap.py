import logging

from collections.abc import Sized
from typing import Any, Callable, Generic, Iterable, List, TypeVar

E = TypeVar( 'E' )

Comparator = Callable[[Any, Any], int]


class HeapError( Exception ):
    pass


class InvalidArgumentError( HeapError, ValueError ):
    pass


class EmptyHeapError( HeapError, IndexError ):
    pass


def natural_order( a, b ) -> int:
    """ Three-way comparison of `a` and `b` using only `<` """
    if a < b:
        return -1
    if b < a:
        return 1
    return 0


def reverse_order( a, b ) -> int:
    return natural_order( b, a )


def key_comparator( key: Callable[[Any], Any], reverse: bool=False ) -> Comparator:
    """
    Builds a comparator that orders values by `key( value )`, for values that are not
    comparable themselves
    """
    def compare( a, b ) -> int:
        if reverse:
            return natural_order( key( b ), key( a ) )
        return natural_order( key( a ), key( b ) )
    return compare


class BinaryHeap( Generic[E] ):
    """
    Binary min heap stored in a growable list.

    Slot 0 of the list is never used, so the parent of slot i is i // 2 and its children
    are 2i and 2i + 1. The comparator returns a negative number, zero or a positive number
    when its first argument is less than, equal to or greater than the second; the root
    is always an element no greater than any other.

    Not thread safe: callers sharing a heap must serialize access themselves.
    """

    def __init__( self, capacity_hint: int, comparator: Callable[[E, E], int] ):
        if isinstance( capacity_hint, bool ) or not isinstance( capacity_hint, int ):
            raise InvalidArgumentError( f"capacity hint must be an integer, not {capacity_hint!r}" )
        if capacity_hint < 0:
            raise InvalidArgumentError( f"capacity hint must not be negative: {capacity_hint}" )
        if not callable( comparator ):
            raise InvalidArgumentError( f"comparator must be callable, not {comparator!r}" )

        self._logging = logging.getLogger( 'binaryheap' )
        self._comparator = comparator
        self._elements: List[Any] = [None] * ( capacity_hint + 1 )
        self._size = 0
        self._logging.debug( "created heap with capacity %d", capacity_hint )

    @property
    def comparator( self ) -> Callable[[E, E], int]:
        return self._comparator

    def size( self ) -> int:
        return self._size

    def __len__( self ) -> int:
        return self._size

    def is_empty( self ) -> bool:
        return self._size == 0

    def clear( self ):
        # The storage is kept, but it must not keep the old elements alive
        for i in range( 1, self._size + 1 ):
            self._elements[i] = None
        self._size = 0
        self._logging.debug( "cleared heap" )

    def _grow( self ):
        capacity = len( self._elements ) - 1
        new_capacity = max( 1, capacity * 2 )
        self._elements.extend( [None] * ( new_capacity - capacity ) )
        self._logging.debug( "grew heap storage from %d to %d", capacity, new_capacity )

    def insert( self, element: E ):
        if self._size + 1 >= len( self._elements ):
            self._grow()

        self._sift_up( self._size + 1, element )
        self._size += 1

    def peek( self ) -> E:
        if self._size == 0:
            raise EmptyHeapError( "peek on an empty heap" )
        return self._elements[1]

    def extract_min( self ) -> E:
        if self._size == 0:
            raise EmptyHeapError( "extract_min on an empty heap" )

        elements = self._elements
        last = self._size
        result = elements[1]

        # The last element was the root
        if last > 1:
            # The last slot is outside the sift, and keeps `current` until the sift succeeds
            self._sift_down( 1, elements[last], last - 1 )

        elements[last] = None
        self._size = last - 1
        return result

    # Moves `element` from the hole at `index` towards the root. Parents that are greater
    # than `element` move down into the hole. If the comparator raises, the parents are
    # moved back and the hole is emptied again.
    def _sift_up( self, index: int, element: E ):
        elements = self._elements
        compare = self._comparator
        moved = []

        try:
            parent = index // 2
            while parent >= 1 and compare( element, elements[parent] ) < 0:
                elements[index] = elements[parent]
                moved.append( index )
                index = parent
                parent = index // 2
        except BaseException:
            # Deepest slot first, each takes back the copy from the slot below it
            for child in reversed( moved ):
                elements[child // 2] = elements[child]
            if len( moved ) > 0:
                elements[moved[0]] = None
            raise

        elements[index] = element

    # Moves `element` from the hole at `index` towards the leaves, promoting the smaller
    # child while `element` is greater than it. Only slots up to `size` take part. If the
    # comparator raises, the promoted children are moved back.
    def _sift_down( self, index: int, element: E, size: int ):
        elements = self._elements
        compare = self._comparator
        moved = []
        start = index
        displaced = elements[start]

        try:
            while True:
                left = 2 * index
                right = left + 1
                if right <= size:
                    # Equal children: the left one wins
                    if compare( elements[left], elements[right] ) <= 0:
                        child = left
                    else:
                        child = right

                    if compare( element, elements[child] ) > 0:
                        elements[index] = elements[child]
                        moved.append( child )
                        index = child
                        continue
                elif left <= size:
                    # A lone left child is the last element, so there is nothing below it
                    if compare( element, elements[left] ) > 0:
                        elements[index] = elements[left]
                        moved.append( left )
                        index = left
                break
        except BaseException:
            # Deepest slot first, each takes back the copy from the slot above it
            for child in reversed( moved ):
                elements[child] = elements[child // 2]
            elements[start] = displaced
            raise

        elements[index] = element


def heap_sort( items: Iterable[E], comparator: Callable[[E, E], int]=natural_order ) -> List[E]:
    capacity = len( items ) if isinstance( items, Sized ) else 0
    heap = BinaryHeap( capacity, comparator )
    for item in items:
        heap.insert( item )

    result = []
    while not heap.is_empty():
        result.append( heap.extract_min() )
    return result
