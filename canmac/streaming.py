#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Simulation record classes

Records produced while running a simulated bus. Times are expressed in base
clock steps.
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

import pickle

from canmac.util.enum import Enum


class StreamError(RuntimeError):
    '''Custom exception class for record streams'''
    pass


class StreamStatus(Enum):
    '''Enumeration for standard stream status codes'''
    Ok = 0
    Warning = 100
    Error = 200


class StreamRecord(object):
    '''Base class for simulation output records

    :ivar kind: A string identifying the kind of record

    :ivar status: An integer status code

    :ivar source: Name of the node that produced the record

    :ivar subrecords: A list of child StreamRecord objects
    '''
    def __init__(self, kind='unknown', status=StreamStatus.Ok, source=None):
        self.kind = kind
        self.status = status
        self.source = source
        self.subrecords = []

    @property
    def time(self):
        '''Step used to order records'''
        raise NotImplementedError

    def nested_status(self):
        '''Returns the highest status value from this record and its subrecords'''
        cur_status = self.status
        for srec in self.subrecords:
            nstat = srec.nested_status()
            cur_status = nstat if nstat > cur_status else cur_status

        return cur_status

    @classmethod
    def status_text(cls, status):
        '''Returns the string representation of a status code'''
        if status in (StreamStatus.Ok, StreamStatus.Warning, StreamStatus.Error):
            return StreamStatus(status)
        else:
            return 'unknown <{}>'.format(status)

    def __repr__(self):
        return 'StreamRecord(\'{0}\')'.format(self.kind)

    def __eq__(self, other):
        if not isinstance(other, StreamRecord): return False

        if (self.kind, self.status, self.source) != (other.kind, other.status, other.source):
            return False

        return self.subrecords == other.subrecords

    def __ne__(self, other):
        return not self == other

    __hash__ = None


class StreamSegment(StreamRecord):
    '''A record that spans two points in time

    CANNode logs every received frame as a segment from its SOF to the step
    where it was accepted.
    '''
    def __init__(self, time_bounds, data=None, kind='unknown segment', status=StreamStatus.Ok, source=None):
        StreamRecord.__init__(self, kind, status, source)
        self.start_time = time_bounds[0]
        self.end_time = time_bounds[1]
        self.data = data

    @property
    def time(self):
        return self.start_time

    def __repr__(self):
        return 'StreamSegment(({0},{1}), {2}, \'{3}\')'.format(self.start_time, self.end_time, \
            repr(self.data), self.kind)

    def __eq__(self, other):
        if not StreamRecord.__eq__(self, other) or not isinstance(other, StreamSegment):
            return False

        return (self.start_time, self.end_time, self.data) == (other.start_time, other.end_time, other.data)

    __hash__ = None


class StreamEvent(StreamRecord):
    '''A record that occurs at a specific point in time'''
    def __init__(self, time, data=None, kind='unknown event', status=StreamStatus.Ok, source=None):
        StreamRecord.__init__(self, kind, status, source)
        self.event_time = time
        self.data = data

    @property
    def time(self):
        return self.event_time

    def __repr__(self):
        return 'StreamEvent({0}, {1}, \'{2}\')'.format(self.event_time, \
            repr(self.data), self.kind)

    def __eq__(self, other):
        if not StreamRecord.__eq__(self, other) or not isinstance(other, StreamEvent):
            return False

        return (self.event_time, self.data) == (other.event_time, other.data)

    __hash__ = None


def save_stream(records, fh):
    '''Save a stream of StreamRecord objects to a file

    records (StreamRecord sequence)
        The StreamRecord objects to save.

    fh (file-like object or a string)
        File to save records to. If a file handle is passed it should have been
        opened in 'wb' mode. If a string is passed it is the name of a file to write to.

    Raises TypeError when records parameter is not a sequence.
    '''
    # Make sure the stream is not an iterator
    if hasattr(records, '__iter__') and not hasattr(records, '__len__'):
        raise TypeError('records parameter must be a sequence, not an iterator')

    if isinstance(fh, str):
        with open(fh, 'wb') as fo:
            pickle.dump(records, fo, -1)
    else:
        pickle.dump(records, fh, -1)


def load_stream(fh):
    '''Restore a stream of StreamRecord objects from a file

    fh (file-like object or a string)
        File to load records from. If a file handle is passed it should have been opened
        in 'rb' mode. If a string is passed it is the name of a file to read from.

    Returns a list of StreamRecord objects
    '''
    if isinstance(fh, str):
        with open(fh, 'rb') as fo:
            return pickle.load(fo)

    return pickle.load(fh)


def merge_records(*streams):
    '''Combine record streams from several nodes into one timeline

    streams (sequences of StreamRecord)
        Record lists, typically the records of each CANNode on a bus.

    Returns a list of records sorted by time. Records with the same time keep
      the order of the streams they came from.
    '''
    merged = []
    for s in streams:
        merged.extend(s)

    return sorted(merged, key=lambda r: r.time)
