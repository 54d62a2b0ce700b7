#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Bus signal processing

   Edge stream utilities and the numpy backed trace of a simulated bus.
'''

# Copyright © 2013 Kevin Thibedeau

# This file is part of Canmac.

# Canmac is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as
# published by the Free Software Foundation, either version 3 of
# the License, or (at your option) any later version.

# Canmac is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Lesser General Public License for more details.

# You should have received a copy of the GNU Lesser General Public
# License along with Canmac. If not, see <http://www.gnu.org/licenses/>.

import numpy as np

from canmac.streaming import StreamError


def remove_excess_edges(edges):
    '''Remove non-changing transitions from an edge stream

    This is a generator function.

    Synthesizers yield an edge for every bit even when the level does not
    change. The repeated states are dropped except for the last one which
    marks the end of the stream.

    edges (iterable of (int, int) tuples)
        An edge stream to filter for extraneous non-edges

    Yields an edge stream.
    '''
    prev_state = None
    last_e = None
    for e in edges:
        if prev_state is None:
            prev_state = e[1]
            yield e
        else:
            if e[1] != prev_state:
                prev_state = e[1]
                last_e = None
                yield e
            else: # Save last edge so we can yield it at the end
                last_e = e

    if last_e is not None:
        yield last_e


def edges_to_levels(edges, start=0):
    '''Convert an edge stream into one level per simulation step

    edges (sequence of (int, int) tuples)
        An edge stream with integer step times. The first element is the
        initial state.

    start (int)
        Step number of the first returned level.

    Returns a numpy int8 array covering start up to the time of the last edge.
    '''
    edges = list(edges)
    if len(edges) == 0:
        raise StreamError('Empty edge stream')

    end = int(edges[-1][0])
    if end <= start:
        return np.zeros(0, dtype=np.int8)

    levels = np.empty(end - start, dtype=np.int8)
    levels.fill(edges[0][1])
    for t, level in edges[1:]:
        t = int(t)
        if t < end:
            levels[max(t - start, 0):] = level

    return levels


class BusTrace(object):
    '''Record of the bus level at every simulation step

    Levels are kept in a growable numpy array.
    '''
    def __init__(self, chunk_size=10000):
        self.chunk_size = chunk_size
        self._levels = np.empty(chunk_size, dtype=np.int8)
        self._count = 0

    def __len__(self):
        return self._count

    def append(self, level):
        if self._count == len(self._levels):
            self._levels = np.concatenate((self._levels, np.empty(self.chunk_size, dtype=np.int8)))

        self._levels[self._count] = level
        self._count += 1

    def clear(self):
        self._count = 0

    @property
    def levels(self):
        '''numpy array of the recorded levels'''
        return self._levels[:self._count]

    def edges(self):
        '''Convert the trace to an edge stream

        Returns a list of (step, level) pairs. The first element is the initial state
          and the last element marks the end of the trace.
        '''
        levels = self.levels
        if len(levels) == 0:
            return []

        change_steps = np.nonzero(np.diff(levels))[0] + 1
        edges = [(0, int(levels[0]))]
        edges.extend((int(t), int(levels[t])) for t in change_steps)
        edges.append((len(levels), int(levels[-1])))

        return list(remove_excess_edges(edges))

    def find_edge(self, level=0, start=0):
        '''Find the first step at or after start where the bus changes to level

        Returns the step number or None.
        '''
        levels = self.levels
        if start >= len(levels):
            return None

        prev = levels[start - 1] if start > 0 else 1 - level
        seg = levels[start:]
        hits = np.nonzero((seg == level) & (np.concatenate(([prev], seg[:-1])) != level))[0]
        if len(hits) == 0:
            return None
        return start + int(hits[0])

    def sample_bits(self, start, bit_steps, count, sample_offset=None):
        '''Sample the trace at a fixed bit period

        start (int)
            Step where the first bit begins

        bit_steps (int)
            Steps per bit

        count (int)
            Number of bits to sample

        sample_offset (int or None)
            Steps from the start of a bit to its sample point. Defaults to the
            middle of the bit.

        Returns a list of int bits.
        '''
        if sample_offset is None:
            sample_offset = bit_steps // 2

        points = start + sample_offset + bit_steps * np.arange(count)
        points = points[points < self._count]

        return [int(b) for b in self.levels[points]]
