#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Canmac CAN MAC simulator
   bus.py end-to-end test suite
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

import canmac.protocol.can as can
import canmac.streaming as stream
from canmac.mac.timing import CANTiming
from canmac.mac.fault import ErrorState
from canmac.mac.fields import Field, MACEvent, TestMode, DOMINANT, RECESSIVE, ERROR_EVENTS, \
    FLAG_BITS, DELIMITER_BITS
from canmac.bus import CANBus, BitInjector, SimulationTimeout, stuck_at
import test.test_support as tsup


def all_idle(nodes):
    return lambda: all(n.controller.field == Field.BusIdle for n in nodes)


class TestFrameTransfer(tsup.RandomSeededTestCase):

    def test_loopback(self):
        self.test_name = 'Loopback frames'
        self.trial_count = 20

        bus = CANBus()
        node = bus.attach(tsup.make_node('lb', test_mode=TestMode.Loopback))

        for i in range(self.trial_count):
            self.update_progress(i+1)

            cf = tsup.gen_random_can_frame()
            node.send(cf)
            bus.run_until(lambda: node.pending == 0, 5000)

            self.assertEqual(node.received[-1], cf)
            self.assertEqual(node.sent[-1], cf)

        self.assertEqual(len(node.received), self.trial_count, 'Extra valid pulses')
        self.assertEqual(len(node.sent), self.trial_count, 'Extra ready pulses')
        self.assertEqual(node.events(), [])
        self.assertEqual((node.controller.tec, node.controller.rec), (0, 0))

        # The bus line is never driven in loopback mode
        self.assertTrue(all(bus.trace.levels == RECESSIVE))

    def test_two_nodes(self):
        self.test_name = 'Two node transfer'
        self.trial_count = 20

        bus, (a, b) = tsup.make_bus(2)
        frames = [tsup.gen_random_can_frame() for _ in range(self.trial_count)]
        for f in frames:
            a.send(f)

        sent = [0]
        def progress():
            if len(a.sent) > sent[0]:
                sent[0] = len(a.sent)
                self.update_progress(sent[0])
            return a.pending == 0

        bus.run_until(progress, 200000)

        self.assertEqual(a.sent, frames)
        self.assertEqual(b.received, frames)
        self.assertEqual(a.received, [])
        self.assertEqual(a.events(), [])
        self.assertEqual(b.events(), [])
        for n in (a, b):
            self.assertEqual((n.controller.tec, n.controller.rec), (0, 0))

        segs = [r for r in b.records if isinstance(r, stream.StreamSegment)]
        self.assertEqual([s.data for s in segs], frames)
        for s in segs:
            self.assertTrue(s.start_time < s.end_time)

    def test_bits_on_bus(self):
        for cf in (can.CANStandardFrame(0x3A5, [0x00, 0xFF, 0x0F]), can.CANExtendedFrame(0x1F0000F, []), \
            can.CANStandardFrame(0x000, [0] * 8)):

            bus, (a, b) = tsup.make_bus(2)
            a.send(cf)
            bus.run_until(lambda: a.pending == 0, 10000)

            bits = can.can_frame_bits(cf)
            sof = bus.trace.find_edge(DOMINANT)
            self.assertEqual(bus.trace.sample_bits(sof, 8, len(bits)), bits)
            self.assertEqual(b.received, [cf])

    def test_dlc_above_eight(self):
        data = [1, 2, 3, 4, 5, 6, 7, 8]
        for dlc in (9, 12, 15):
            tx = can.CANStandardFrame(0x155, data)
            tx.dlc = dlc

            bus, (a, b) = tsup.make_bus(2)
            a.send(tx)
            bus.run_until(lambda: a.pending == 0, 10000)

            # Eight data bytes follow the DLC
            bits = can.can_frame_bits(tx)
            sof = bus.trace.find_edge(DOMINANT)
            self.assertEqual(bus.trace.sample_bits(sof, 8, len(bits)), bits)

            self.assertEqual(a.sent, [tx])
            self.assertEqual(b.events(), [])
            self.assertEqual(len(b.received), 1)
            rx = b.received[0]
            self.assertEqual(rx.dlc, 8)
            self.assertEqual(rx.data_bytes, data)
            self.assertEqual(rx, can.CANStandardFrame(0x155, data))

    def test_resync(self):
        self.test_name = 'Delayed receivers'
        self.trial_count = 10

        timing = CANTiming(2, 5, 2, 1)
        bus, nodes = tsup.make_bus(3, timing, rx_delays=[0, 3, 5], phases=[0, 1, 0])
        a, b, c = nodes

        frames = [tsup.gen_random_can_frame() for _ in range(self.trial_count)]
        for f in frames:
            a.send(f)

        bus.run_until(lambda: a.pending == 0, 400000)

        self.assertEqual(b.received, frames)
        self.assertEqual(c.received, frames)
        for n in nodes:
            self.assertEqual(n.events(), [], '{} events: {}'.format(n.name, n.events()))


class TestArbitration(unittest.TestCase):

    def test_two_transmitters(self):
        fa = can.CANStandardFrame(0x100, [0xA])
        fb = can.CANStandardFrame(0x080, [0xB])

        bus, (a, b) = tsup.make_bus(2)
        a.send(fa)
        b.send(fb)

        bus.run_until(lambda: len(a.controller.events) > 0, 5000)
        self.assertEqual(a.controller.events, [MACEvent.ArbitrationLost])
        # The third ID bit is the first that differs
        self.assertEqual(a.controller.field, Field.Identifier)
        self.assertEqual(a.controller.bsp.bit_count, 3)

        bus.run_until(lambda: a.pending == 0 and b.pending == 0, 10000)

        self.assertEqual(b.sent, [fb])
        self.assertEqual(a.sent, [fa])
        self.assertEqual(a.received, [fb])
        self.assertEqual(b.received, [fa])
        self.assertEqual(b.events(), [])

        for n in (a, b):
            self.assertEqual((n.controller.tec, n.controller.rec), (0, 0))
            self.assertEqual([e for e in n.events() if e in ERROR_EVENTS], [])

    def test_priority_order(self):
        ids = [0x7F0, 0x123, 0x124, 0x001]
        bus, nodes = tsup.make_bus(len(ids))
        for n, i in zip(nodes, ids):
            n.send(can.CANStandardFrame(i, [i & 0xFF]))

        bus.run_until(lambda: all(n.pending == 0 for n in nodes), 40000)

        # Every node sees the other frames in priority order
        for n, i in zip(nodes, ids):
            got = [f.id for f in n.received]
            self.assertEqual(got, sorted(x for x in ids if x != i))

    def test_standard_beats_extended(self):
        fs = can.CANStandardFrame(0x155, [1])
        fx = can.CANExtendedFrame(0x155 << 18, [1])

        bus, (a, b) = tsup.make_bus(2)
        a.send(fx)
        b.send(fs)
        bus.run_until(lambda: a.pending == 0 and b.pending == 0, 10000)

        self.assertEqual(a.received, [fs])
        self.assertEqual(b.received, [fx])
        self.assertEqual(a.events(), [MACEvent.ArbitrationLost])


class TestErrorSignalling(unittest.TestCase):

    def test_crc_error(self):
        good = can.CANStandardFrame(0x2C3, [0x12, 0x34], ack=False)
        bad = can.CANStandardFrame(0x2C3, [0x12, 0x35], ack=False)
        bad.crc = bad.crc ^ 0x01

        edges = can.can_synth([good, bad], 8, idle_start=8 * 20)

        bus = CANBus()
        inj = bus.attach(BitInjector(edges))
        b = bus.attach(tsup.make_node('b'))

        bus.run_until(lambda: inj.done, 10000)
        bus.run(8 * 30)

        self.assertEqual(b.received, [good])
        self.assertEqual(b.events(), [MACEvent.CRCError])
        self.assertEqual(b.controller.rec, 1)
        self.assertEqual(b.controller.field, Field.BusIdle)

        errs = [r for r in b.records if isinstance(r, stream.StreamEvent)]
        self.assertEqual(errs[0].status, stream.StreamStatus.Error)

    def test_stuff_error(self):
        # Six dominant bits after SOF
        edges = [(0, 1), (8 * 20, 0), (8 * 27, 1), (8 * 60, 1)]

        bus = CANBus()
        bus.attach(BitInjector(edges))
        b = bus.attach(tsup.make_node('b'))
        c = bus.attach(tsup.make_node('c'))

        bus.run(8 * 60)
        for n in (b, c):
            self.assertEqual(n.events(), [MACEvent.StuffError])
            self.assertEqual(n.controller.rec, 1)
            self.assertEqual(n.controller.field, Field.BusIdle)

    def test_overload(self):
        cf = can.CANStandardFrame(0x321, [1, 2])
        bus, (a, b) = tsup.make_bus(2)
        a.send(cf)

        bus.run_until(lambda: a.controller.frame_start, 5000)
        sof = bus.trace.find_edge(DOMINANT)
        end = sof + 8 * len(can.can_frame_bits(cf))

        # Dominant first intermission bit
        bus.disturb(stuck_at(DOMINANT, end, end + 8))
        bus.run_until(lambda: bus.step_count > end + 16, 5000)
        bus.run_until(all_idle((a, b)), 5000)

        self.assertEqual(a.events(), [MACEvent.Overload])
        self.assertEqual(b.events(), [MACEvent.Overload])
        self.assertEqual(a.sent, [cf])
        self.assertEqual(b.received, [cf])
        for n in (a, b):
            self.assertEqual((n.controller.tec, n.controller.rec), (0, 0))

    def test_overload_last_eof_bit(self):
        cf = can.CANStandardFrame(0x321, [1, 2])
        bus, (a, b) = tsup.make_bus(2)
        a.send(cf)

        bus.run_until(lambda: a.controller.frame_start, 5000)
        sof = bus.trace.find_edge(DOMINANT)
        end = sof + 8 * len(can.can_frame_bits(cf))

        # Dominant seventh EOF bit
        bus.disturb(stuck_at(DOMINANT, end - 8, end))
        bus.run_until(lambda: bus.step_count > end + 8 * 20, 5000)
        bus.run_until(all_idle((a, b)), 5000)
        bus.run(8 * 40)

        self.assertEqual(a.events(), [MACEvent.Overload])
        self.assertEqual(b.events(), [MACEvent.Overload])
        self.assertEqual(a.sent, [cf])
        self.assertEqual(a.pending, 0)
        self.assertEqual(b.received, [cf], 'Frame delivered more than once')
        for n in (a, b):
            self.assertEqual((n.controller.tec, n.controller.rec), (0, 0))

    def test_overload_delimiter(self):
        cf = can.CANStandardFrame(0x321, [1, 2])
        bus, (a, b) = tsup.make_bus(2)
        a.send(cf)

        bus.run_until(lambda: a.controller.frame_start, 5000)
        sof = bus.trace.find_edge(DOMINANT)
        end = sof + 8 * len(can.can_frame_bits(cf))

        # Overload frame from the first intermission bit with a dominant
        # last delimiter bit
        last = end + 8 * (1 + FLAG_BITS + DELIMITER_BITS - 1)
        bus.disturb(stuck_at(DOMINANT, end, end + 8))
        bus.disturb(stuck_at(DOMINANT, last, last + 8))

        bus.run_until(lambda: bus.step_count > last + 8, 5000)
        for n in (a, b):
            self.assertEqual(n.controller.field, Field.OverloadFlag)

        bus.run_until(all_idle((a, b)), 5000)
        for n in (a, b):
            self.assertEqual(n.events(), [MACEvent.Overload] * 2)
            self.assertEqual((n.controller.tec, n.controller.rec), (0, 0))
        self.assertEqual(a.sent, [cf])
        self.assertEqual(b.received, [cf])

    def test_delimiter_form_errors(self):
        cf = can.CANStandardFrame(0x321, [1, 2])
        L = len(can.can_frame_bits(cf))

        # CRC delimiter and ACK delimiter
        for index in (L - 10, L - 8):
            bus, (a, b) = tsup.make_bus(2)
            a.send(cf)

            bus.run_until(lambda: a.controller.frame_start, 5000)
            sof = bus.trace.find_edge(DOMINANT)
            bus.disturb(stuck_at(DOMINANT, sof + 8 * index, sof + 8 * (index + 1)))

            bus.run_until(lambda: len(b.controller.events) > 0, 5000)
            self.assertEqual(b.controller.events, [MACEvent.FormError])
            self.assertEqual(bus.step_count - 1, sof + 8 * index + 5)

            # The frame is repeated
            bus.run_until(lambda: a.pending == 0, 10000)
            self.assertEqual(a.events(), [MACEvent.FormError])
            self.assertEqual(b.events(), [MACEvent.FormError])
            self.assertEqual(b.received, [cf])
            self.assertEqual(a.controller.tec, 7)
            self.assertEqual(b.controller.rec, 0)

    def test_ack_error(self):
        bus, (a,) = tsup.make_bus(1)
        a.send(can.CANStandardFrame(0x10, [1]))

        bus.run_until(lambda: a.controller.tec >= 16, 20000)
        self.assertEqual(a.events(MACEvent.AckError), [MACEvent.AckError] * 2)
        self.assertEqual(a.pending, 1)
        self.assertEqual(a.sent, [])

    def test_bus_off(self):
        fault = {'on': True}
        def rx_fault(step, level):
            return RECESSIVE if fault['on'] else level

        bus = CANBus()
        a = bus.attach(tsup.make_node('a'), rx_fault=rx_fault)
        b = bus.attach(tsup.make_node('b'))
        c = bus.attach(tsup.make_node('c'))

        # The transmitter never sees its own dominant bits
        history = []
        def watch():
            ctl = a.controller
            if len(history) == 0 or history[-1][0] != ctl.tec:
                history.append((ctl.tec, ctl.error_state))
            return ctl.error_state == ErrorState.BusOff

        a.send(can.CANStandardFrame(0x100, [1, 2]))
        bus.run_until(watch, 100000)

        for tec, state in history:
            if tec >= 256:
                self.assertEqual(state, ErrorState.BusOff)
            elif tec >= 128:
                self.assertEqual(state, ErrorState.Passive, 'TEC={}'.format(tec))
            else:
                self.assertEqual(state, ErrorState.Active, 'TEC={}'.format(tec))

        tecs = [h[0] for h in history]
        self.assertTrue(128 in tecs)
        self.assertEqual(tecs[-1], 256)
        self.assertEqual(a.controller.field, Field.Synchronize)

        # Bus-off persists while other nodes communicate
        fault['on'] = False
        fb = can.CANStandardFrame(0x200, [3])
        b.send(fb)

        quiet = [True]
        def delivered():
            if a.controller.tx_line != RECESSIVE or a.controller.field != Field.Synchronize:
                quiet[0] = False
            return b.pending == 0

        bus.run_until(delivered, 100000)
        self.assertTrue(quiet[0])
        self.assertEqual(c.received[-1], fb)
        self.assertEqual(a.received, [])
        self.assertEqual(a.controller.error_state, ErrorState.BusOff)

        # Only a reset recovers
        a.tx_queue.clear()
        a.controller.reset()
        self.assertEqual((a.controller.tec, a.controller.rec), (0, 0))

        bus.run_until(lambda: a.controller.field == Field.BusIdle, 10000)
        fb2 = can.CANStandardFrame(0x201, [4])
        b.send(fb2)
        bus.run_until(lambda: len(a.received) > 0, 10000)
        self.assertEqual(a.received, [fb2])
        self.assertEqual(a.controller.error_state, ErrorState.Active)

    def test_timeout(self):
        bus, (a,) = tsup.make_bus(1)
        self.assertRaises(SimulationTimeout, bus.run_until, lambda: False, 100)
        self.assertEqual(bus.step_count, 100)


class TestIntermission(unittest.TestCase):
    '''Another station starts a frame on the third intermission bit'''

    def _start_on_third_bit(self, bus, node, frame, injected):
        '''Inject a frame whose SOF falls on the third intermission bit after frame'''
        bus.run_until(lambda: node.controller.frame_start, 5000)
        sof = bus.trace.find_edge(DOMINANT)
        end = sof + 8 * len(can.can_frame_bits(frame))

        edges = can.can_synth([injected], 8)
        # The edge stream has its SOF after the interframe space
        bus.attach(BitInjector(edges, end + 16 - 8 * injected.ifs_bits - bus.step_count))
        return end + 16

    def test_previous_transmitter_receives(self):
        f1 = can.CANStandardFrame(0x321, [1, 2])
        f2 = can.CANStandardFrame(0x7F0, [7], ack=False)

        bus, (a, b) = tsup.make_bus(2)
        a.send(f1)
        sof2 = self._start_on_third_bit(bus, a, f1, f2)

        bus.run_until(lambda: len(b.received) == 2, 5000)
        bus.run_until(all_idle((a, b)), 5000)

        self.assertEqual(a.sent, [f1])
        self.assertEqual(a.received, [f2])
        self.assertEqual(b.received, [f1, f2])
        self.assertEqual(a.events(), [])
        self.assertEqual(b.events(), [])
        self.assertFalse(a.controller.bsp.transmitting)

        # Only the injected frame and the acknowledgments are on the bus
        bits = can.can_frame_bits(can.CANStandardFrame(0x7F0, [7]))
        self.assertEqual(bus.trace.find_edge(DOMINANT, sof2 - 16), sof2)
        self.assertEqual(bus.trace.sample_bits(sof2, 8, len(bits)), bits)

    def test_passive_transmitter_waits(self):
        f1 = can.CANStandardFrame(0x321, [1, 2])
        f2 = can.CANStandardFrame(0x7F0, [7], ack=False)
        f3 = can.CANStandardFrame(0x056, [4])

        bus, (a, b) = tsup.make_bus(2)
        a.controller.fault.increase_tec(130)
        a.send(f1)
        a.send(f3)
        self._start_on_third_bit(bus, a, f1, f2)

        bus.run_until(lambda: a.pending == 0, 20000)

        self.assertEqual(a.sent, [f1, f3])
        self.assertEqual(a.received, [f2])
        self.assertEqual(b.received, [f1, f2, f3])
        self.assertEqual(a.events(), [])
        self.assertEqual(b.events(), [])


class TestTestModes(unittest.TestCase):

    def test_listen_only(self):
        bus = CANBus()
        a = bus.attach(tsup.make_node('a'))
        b = bus.attach(tsup.make_node('b'))
        lo = bus.attach(tsup.make_node('lo', test_mode=TestMode.ListenOnly))

        fa = can.CANStandardFrame(0x10, [1, 2, 3])
        a.send(fa)
        lo.send(can.CANStandardFrame(0x001, [9]))

        quiet = [True]
        def done():
            if lo.controller.tx_line != RECESSIVE or lo.controller.bsp.tx_bit != RECESSIVE:
                quiet[0] = False
            return a.pending == 0

        bus.run_until(done, 10000)
        bus.run(8 * 20)

        self.assertTrue(quiet[0])
        self.assertEqual(lo.received, [fa])
        self.assertEqual(lo.pending, 1)
        self.assertEqual(b.received, [fa])

    def test_listen_only_no_ack(self):
        bus = CANBus()
        a = bus.attach(tsup.make_node('a'))
        lo = bus.attach(tsup.make_node('lo', test_mode=TestMode.ListenOnly))

        a.send(can.CANStandardFrame(0x10, [1]))
        bus.run_until(lambda: MACEvent.AckError in a.controller.events, 10000)
        bus.run(8 * 40)
        self.assertEqual(lo.received, [])
        self.assertEqual(a.sent, [])


class TestPassiveTransmitter(unittest.TestCase):

    def test_suspend_transmission(self):
        f1 = can.CANStandardFrame(0x055, [1, 2, 3])
        f2 = can.CANStandardFrame(0x056, [4])
        L = len(can.can_frame_bits(f1))

        for tec, suspend_bits in ((0, 0), (130, 8)):
            bus, (a, b) = tsup.make_bus(2)
            a.controller.fault.increase_tec(tec)
            a.send(f1)
            a.send(f2)

            bus.run_until(lambda: a.pending == 0, 20000)
            self.assertEqual(b.received, [f1, f2])
            self.assertEqual(a.controller.tec, max(tec - 2, 0))

            sof1 = bus.trace.find_edge(DOMINANT)
            sof2 = bus.trace.find_edge(DOMINANT, sof1 + 8 * L)
            self.assertEqual(sof2, sof1 + 8 * (L + 3 + suspend_bits))
