#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Canmac CAN MAC simulator
   streaming.py and sigproc.py test suite
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

import unittest
import random
import os

import numpy as np

import canmac.streaming as stream
import canmac.sigproc as sigp
import canmac.protocol.can as can
import test.test_support as tsup

class TestStreamingFuncs(tsup.RandomSeededTestCase):

    def test_save_stream(self):
        self.test_name = 'save_stream() test'
        self.trial_count = 40

        out_dir = os.path.join('test', 'test-output')
        if not os.path.exists(out_dir):
            os.makedirs(out_dir)

        save_file = os.path.join(out_dir, 'test_save_stream.bin')

        for i in range(self.trial_count):
            self.update_progress(i+1)

            rec_count = random.randint(0,4)

            records = []
            
            for r in range(rec_count):
                t = random.randint(0, 10000)
                if random.random() < 0.5:
                    rec = stream.StreamSegment((t, t + random.randint(1, 1000)), tsup.gen_random_can_frame(), \
                        kind='CAN frame', source='n{}'.format(r))
                else:
                    rec = stream.StreamEvent(t, data=random.randint(1, 7), kind='event', \
                        status=random.choice((stream.StreamStatus.Ok, stream.StreamStatus.Error)), source='n{}'.format(r))
                records.append(rec)

                srec_count = random.randint(0,4)
                for sr in range(srec_count):
                    rnd_kind = ''.join([chr(random.randrange(ord('a'), ord('z')+1)) for _ in range(4)])
                    srec = stream.StreamRecord(kind=rnd_kind, status = random.randint(0,1000))
                    rec.subrecords.append(srec)


            stream.save_stream(records, save_file)
            saved_recs = stream.load_stream(save_file)

            self.assertEqual(len(records), len(saved_recs), 'Mismatch record count')

            if len(records) == len(saved_recs):
                for r,s in zip(records, saved_recs):
                    self.assertEqual(r, s, 'Mismatched records')

    def test_save_iterator(self):
        self.assertRaises(TypeError, stream.save_stream, iter([]), os.devnull)

    def test_nested_status(self):
        rec = stream.StreamSegment((0, 10), kind='frame')
        rec.subrecords.append(stream.StreamEvent(3, kind='warn', status=stream.StreamStatus.Warning))
        self.assertEqual(rec.nested_status(), stream.StreamStatus.Warning)

        rec.subrecords.append(stream.StreamEvent(4, kind='err', status=stream.StreamStatus.Error))
        self.assertEqual(rec.nested_status(), stream.StreamStatus.Error)
        self.assertEqual(stream.StreamRecord.status_text(stream.StreamStatus.Error), 'Error')
        self.assertEqual(stream.StreamRecord.status_text(7), 'unknown <7>')

    def test_merge_records(self):
        a = [stream.StreamEvent(5, kind='a1', source='a'), stream.StreamSegment((20, 30), kind='a2', source='a')]
        b = [stream.StreamSegment((1, 8), kind='b1', source='b'), stream.StreamEvent(20, kind='b2', source='b')]
        c = [stream.StreamEvent(5, kind='c1', source='c')]

        merged = stream.merge_records(a, b, c)
        self.assertEqual([r.kind for r in merged], ['b1', 'a1', 'c1', 'a2', 'b2'])
        self.assertEqual([r.source for r in merged], ['b', 'a', 'c', 'a', 'b'])
        self.assertEqual(stream.merge_records(), [])

    def test_record_equality(self):
        e = stream.StreamEvent(3, data=1, kind='ev', source='n0')
        self.assertEqual(e, stream.StreamEvent(3, data=1, kind='ev', source='n0'))
        self.assertNotEqual(e, stream.StreamEvent(3, data=1, kind='ev', source='n1'))
        self.assertNotEqual(e, stream.StreamEvent(4, data=1, kind='ev', source='n0'))
        self.assertNotEqual(e, stream.StreamSegment((3, 4), data=1, kind='ev', source='n0'))
        self.assertEqual(e.time, 3)
        self.assertEqual(stream.StreamSegment((7, 9)).time, 7)


class TestSigproc(unittest.TestCase):

    def test_remove_excess_edges(self):
        edges = [(0, 1), (5, 1), (8, 0), (9, 0), (12, 1), (20, 1)]
        self.assertEqual(list(sigp.remove_excess_edges(edges)), [(0, 1), (8, 0), (12, 1), (20, 1)])

    def test_edges_to_levels(self):
        levels = sigp.edges_to_levels([(0, 1), (3, 0), (5, 1), (8, 1)])
        self.assertEqual(list(levels), [1, 1, 1, 0, 0, 1, 1, 1])
        self.assertEqual(levels.dtype, np.int8)

        self.assertRaises(stream.StreamError, sigp.edges_to_levels, [])

    def test_trace(self):
        trace = sigp.BusTrace(chunk_size=4)
        levels = [1, 1, 0, 0, 0, 1, 0, 1, 1, 1]
        for b in levels:
            trace.append(b)

        self.assertEqual(len(trace), 10)
        self.assertEqual(list(trace.levels), levels)
        self.assertEqual(trace.edges(), [(0, 1), (2, 0), (5, 1), (6, 0), (7, 1), (10, 1)])
        self.assertEqual(trace.find_edge(0), 2)
        self.assertEqual(trace.find_edge(0, 3), 6)
        self.assertEqual(trace.find_edge(0, 7), None)
        self.assertEqual(trace.sample_bits(0, 2, 5, sample_offset=0), [1, 0, 0, 0, 1])

        trace.clear()
        self.assertEqual(len(trace), 0)
        self.assertEqual(trace.edges(), [])

    def test_trace_round_trip(self):
        cf = can.CANStandardFrame(0x3A5, [0x55, 0x00])
        edges = can.can_synth([cf], 8, idle_start=8)
        trace = sigp.BusTrace()
        for b in sigp.edges_to_levels(edges):
            trace.append(b)

        start = trace.find_edge(0)
        self.assertEqual(start, 8 + 8 * 3)
        bits = can.can_frame_bits(cf)
        self.assertEqual(trace.sample_bits(start, 8, len(bits)), bits)
