#!/usr/bin/python
# -*- coding: utf-8 -*-

'''CAN bus simulator

   A wired-AND bus connecting CAN controllers and signal injectors. All
   attached drivers are advanced in lockstep, one base clock cycle per step.
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

import logging
from collections import deque

import canmac.streaming as stream
from canmac.sigproc import BusTrace, edges_to_levels
from canmac.mac.fields import RECESSIVE, MACEvent, ERROR_EVENTS

logger = logging.getLogger(__name__)


class SimulationTimeout(RuntimeError):
    '''Error for a simulation that did not reach its goal in time'''
    pass


class _BusPort(object):
    '''Connection of one driver to the bus'''
    def __init__(self, driver, rx_delay=0, rx_fault=None):
        self.driver = driver
        self.rx_delay = rx_delay
        self.rx_fault = rx_fault
        self._pipe = deque([RECESSIVE] * (rx_delay + 1), maxlen=rx_delay + 1)

    def receive(self, step, level):
        '''Level seen by the driver after the port delay and fault'''
        self._pipe.append(level)
        level = self._pipe[0]
        if self.rx_fault is not None:
            level = self.rx_fault(step, level)
        return level


class CANBus(object):
    '''Wired-AND bus

    Any driver can be attached as long as it has a tx_line attribute and a
    step(rx_level) method. Every step the bus level is computed from the
    tx_line values committed in the previous step and then all drivers are
    stepped with the level they receive.
    '''
    def __init__(self, record=True):
        '''
        record (bool)
            Keep a BusTrace of every step in the trace attribute.
        '''
        self.ports = []
        self.disturbances = []
        self.trace = BusTrace() if record else None
        self.level = RECESSIVE
        self.step_count = 0

    def attach(self, driver, rx_delay=0, rx_fault=None):
        '''Connect a driver to the bus

        driver (CANNode, CANController, or BitInjector)
            The object to connect.

        rx_delay (int)
            Number of steps the received level lags the bus.

        rx_fault (function or None)
            Called as rx_fault(step, level) to alter the level received by
            this driver only.

        Returns the driver.
        '''
        self.ports.append(_BusPort(driver, rx_delay, rx_fault))
        return driver

    def disturb(self, fn):
        '''Add a disturbance applied to the bus level seen by every driver

        fn (function)
            Called as fn(step, level). Returns the new level.
        '''
        self.disturbances.append(fn)

    def step(self):
        level = RECESSIVE
        for p in self.ports:
            level &= p.driver.tx_line

        for fn in self.disturbances:
            level = fn(self.step_count, level)

        self.level = level
        if self.trace is not None:
            self.trace.append(level)

        for p in self.ports:
            p.driver.step(p.receive(self.step_count, level))

        self.step_count += 1
        return level

    def run(self, steps):
        '''Advance the simulation by a number of steps'''
        for _ in range(steps):
            self.step()

    def run_until(self, predicate, max_steps):
        '''Advance the simulation until predicate() is True

        predicate (function)
            Called without arguments after every step.

        max_steps (int)
            Limit on the number of steps.

        Returns the number of steps taken.

        Raises SimulationTimeout when max_steps is exceeded.
        '''
        for i in range(max_steps):
            self.step()
            if predicate():
                return i + 1

        raise SimulationTimeout('Condition not met after {} steps'.format(max_steps))


class CANNode(object):
    '''Queueing wrapper around a CANController

    Frames passed to send() are handed to the controller one at a time.
    Received frames and protocol events are logged as stream records.
    '''
    def __init__(self, controller, name=None):
        '''
        controller (CANController)
            The controller for this node

        name (string or None)
            Name of the node. Uses the controller name when None.
        '''
        self.controller = controller
        self.name = name if name is not None else controller.name
        self.tx_queue = deque()
        self.received = []
        self.sent = []
        self.records = []
        self.time = 0
        self._frame_start = None

    @property
    def tx_line(self):
        return self.controller.tx_line

    def send(self, frame):
        '''Queue a frame for transmission'''
        self.tx_queue.append(frame)
        self._load()

    def _load(self):
        c = self.controller
        if len(self.tx_queue) > 0:
            c.tx_frame = self.tx_queue[0]
            c.tx_valid = True
        else:
            c.tx_frame = None
            c.tx_valid = False

    @property
    def pending(self):
        return len(self.tx_queue)

    def events(self, kind=None):
        '''Return the logged MACEvent values

        kind (MACEvent or None)
            Only return this kind of event when not None.
        '''
        return [r.data for r in self.records if isinstance(r, stream.StreamEvent) \
            and (kind is None or r.data == kind)]

    def step(self, bus_level):
        c = self.controller
        t = self.time
        c.step(bus_level)

        if c.frame_start:
            self._frame_start = t

        for ev in c.events:
            if ev in ERROR_EVENTS:
                status = stream.StreamStatus.Error
            elif ev == MACEvent.Overload:
                status = stream.StreamStatus.Warning
            else:
                status = stream.StreamStatus.Ok
            self.records.append(stream.StreamEvent(t, data=ev, kind=MACEvent(ev), status=status, source=self.name))

        if c.rx_valid:
            start = self._frame_start if self._frame_start is not None else t
            self.received.append(c.rx_frame)
            self.records.append(stream.StreamSegment((start, t), c.rx_frame, kind='CAN frame', source=self.name))
            logger.info('%s: received %r', self.name, c.rx_frame)

        if c.tx_ready:
            self.sent.append(self.tx_queue.popleft())
            logger.info('%s: sent %r', self.name, self.sent[-1])

        self._load()
        self.time += 1

        return c.tx_line


class BitInjector(object):
    '''Drive a fixed edge stream onto the bus

    The injector behaves like a bus driver that ignores the bus. It can be used
    to place corrupted frames built with can_synth() on the bus.
    '''
    def __init__(self, edges, start=0):
        '''
        edges (sequence of (int, int) tuples)
            Edge stream with step times.

        start (int)
            Bus step at which the edge stream time 0 occurs.
        '''
        self.levels = edges_to_levels(edges)
        self.start = start
        self.time = 0
        self.tx_line = self._level_at(0)

    def _level_at(self, t):
        i = t - self.start
        if 0 <= i < len(self.levels):
            return int(self.levels[i])
        return RECESSIVE

    @property
    def done(self):
        return self.time - self.start >= len(self.levels)

    def step(self, bus_level):
        self.time += 1
        self.tx_line = self._level_at(self.time)
        return self.tx_line


def stuck_at(level, start=0, end=None):
    '''Build an rx_fault or disturbance function forcing a fixed level

    level (int)
        The forced level (DOMINANT or RECESSIVE)

    start (int)
        First affected step.

    end (int or None)
        First step no longer affected. Forever when None.
    '''
    def fault(step, bus_level):
        if step >= start and (end is None or step < end):
            return level
        return bus_level

    return fault
