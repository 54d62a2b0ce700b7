#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Canmac CAN MAC simulator
   Canmac demo script
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

import sys
import logging
from optparse import OptionParser

import canmac
import canmac.config as config
import canmac.streaming as stream
import canmac.protocol.can as can
from canmac.mac.timing import CANTiming
from canmac.mac.controller import CANController
from canmac.mac.fields import TestMode
from canmac.mac.fault import ErrorState
from canmac.bus import CANBus, CANNode, SimulationTimeout


def main():
    '''Entry point for script'''

    usage = '''%prog [-n NODES] [-i IDS] [-m MSG]

Simulate CAN nodes starting transmissions at the same time. Lower IDs win
arbitration and every node eventually delivers its frame.
    '''
    parser = OptionParser(usage=usage)

    parser.add_option('-n', '--nodes', dest='nodes', default=3, type=int, help='Number of nodes')
    parser.add_option('-i', '--ids', dest='ids', help='Comma separated frame IDs, one per node')
    parser.add_option('-m', '--msg', dest='msg', default='Canmac', help='Data payload (first 8 bytes are used)')
    parser.add_option('-x', '--extended', dest='extended', action='store_true', default=False, help='Send extended frames')
    parser.add_option('-d', '--delay', dest='delay', default=0, type=int, help='Receive delay in steps for every other node')
    parser.add_option('-t', '--timing', dest='timing', help='Bit timing "prescaler,tseg1,tseg2,sjw"')
    parser.add_option('-s', '--steps', dest='max_steps', default=100000, type=int, help='Simulation step limit')
    parser.add_option('-l', '--log-level', dest='log_level', help='Logging level (DEBUG, INFO, WARNING)')
    parser.add_option('-b', '--bits', dest='show_bits', action='store_true', default=False, help='Print the bus edges')
    parser.add_option('-o', '--output', dest='output', help='Save the merged records to a file')

    options, args = parser.parse_args()

    log_level = options.log_level if options.log_level is not None else config.settings.log_level
    logging.basicConfig(level=getattr(logging, log_level.upper(), logging.WARNING), \
        format='%(levelname)s %(name)s: %(message)s')

    if options.timing is not None:
        try:
            timing = CANTiming(*[int(x) for x in options.timing.split(',')])
        except (ValueError, TypeError) as e:
            print('Invalid bit timing: {}'.format(e))
            sys.exit(1)
    else:
        timing = CANTiming.from_settings()

    if options.ids is not None:
        ids = [int(x, 0) for x in options.ids.split(',')]
    else:
        ids = [0x100 + 0x10 * i for i in range(options.nodes)][::-1]

    data = bytearray(options.msg.encode('latin1'))[:8]

    print('** Canmac {} demo **\n'.format(canmac.__version__))
    print('Bit timing: {} ({} steps per bit, sample point {:.0%})\n'.format(timing, timing.bit_steps, \
        timing.sample_point))

    try:
        frames = [can.CANExtendedFrame(i, data) if options.extended else can.CANStandardFrame(i, data) \
            for i in ids]
    except can.FrameError as e:
        print('Invalid frame: {}'.format(e))
        sys.exit(1)

    bus = CANBus()
    nodes = []
    for n, f in enumerate(frames):
        name = 'node{}'.format(n)
        ctl = CANController(timing, TestMode.Normal, name)
        node = bus.attach(CANNode(ctl), rx_delay=options.delay if n % 2 else 0)
        node.send(f)
        nodes.append(node)

    try:
        steps = bus.run_until(lambda: all(n.pending == 0 for n in nodes), options.max_steps)
        bus.run(timing.bit_steps * 12) # Let the last frame complete on every node
    except SimulationTimeout as e:
        print('Simulation did not finish: {}'.format(e))
        steps = options.max_steps

    print('Simulated {} steps ({} bit times)\n'.format(steps, steps // timing.bit_steps))

    for node in nodes:
        ctl = node.controller
        print('{}: {}  TEC={} REC={}'.format(node.name, ErrorState(ctl.error_state), ctl.tec, ctl.rec))
    print('')

    records = stream.merge_records(*[n.records for n in nodes])

    print('Timeline:')
    for r in records:
        if isinstance(r, stream.StreamSegment):
            print('  {:>8} - {:>8}  {:<6} {}'.format(r.start_time, r.end_time, r.source, r.data))
        else:
            status = stream.StreamRecord.status_text(r.status)
            print('  {:>8}             {:<6} {} ({})'.format(r.time, r.source, r.kind, status))
    print('')

    if options.output is not None:
        stream.save_stream(records, options.output)
        print('Saved {} records to {}\n'.format(len(records), options.output))

    if options.show_bits:
        print('Bus edges:')
        for t, level in bus.trace.edges():
            print('  {:>8} {}'.format(t, level))


if __name__ == '__main__':
    main()
