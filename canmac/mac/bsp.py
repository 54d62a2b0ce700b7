#!/usr/bin/python
# -*- coding: utf-8 -*-

'''CAN bit stream processor

The protocol field state machine of a CAN node. It walks every bit of a frame
through the protocol fields, drives transmission, assembles received frames
and classifies errors. Fault confinement counters are updated through the
FaultConfinement object it is given.
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

from canmac.protocol.can import CANFrame
from canmac.util.bitops import bit_at
from canmac.mac.fields import *
from canmac.mac.stuffing import BitStuffer
from canmac.mac.crc import CRCEngine
from canmac.mac.biterror import BitErrorDetector
from canmac.mac.fault import ErrorState, BUS_OFF_LIMIT

logger = logging.getLogger(__name__)


class BitStreamProcessor(object):
    '''Protocol field state machine (BSP)

    The BSP is advanced with the pulses of a BitTimingEngine. Field
    progression happens on sample pulses. The bit to drive is selected on
    transmit pulses from the field and counters reached at the previous
    sample.

    Outputs are valid for one step after step() returns:

    :ivar tx_bit: Level driven onto the bus
    :ivar events: List of MACEvent values raised during the step
    :ivar rx_valid: A received frame is available in rx_frame
    :ivar rx_frame: The received CANFrame (None unless rx_valid)
    :ivar tx_ready: The pending transmit frame was sent successfully
    :ivar frame_start: A start of frame bit was sampled
    :ivar transition: The field changed during the step
    '''
    def __init__(self, fault, test_mode=TestMode.Normal, name=''):
        '''
        fault (FaultConfinement)
            Error counters of this node.

        test_mode (TestMode)
            Operating mode. ListenOnly never drives dominant levels or starts
            transmissions. Loopback suppresses ACK errors and reports the
            node's own frames as received.

        name (string)
            Node name used in log messages.
        '''
        self.fault = fault
        self.test_mode = test_mode
        self.name = name

        self.stuffer = BitStuffer()
        self.crc = CRCEngine()
        self.bit_error = BitErrorDetector()

        self._sample_handlers = {
            Field.Synchronize: self._sample_synchronize,
            Field.BusIdle: self._sample_bus_idle,
            Field.StartOfFrame: self._sample_start_of_frame,
            Field.Identifier: self._sample_arbitration,
            Field.RtrSrr: self._sample_arbitration,
            Field.Ide: self._sample_arbitration,
            Field.ExtendedIdentifier: self._sample_arbitration,
            Field.ExtendedRtr: self._sample_arbitration,
            Field.Reserved1: self._sample_control,
            Field.Reserved0: self._sample_control,
            Field.Dlc: self._sample_control,
            Field.Data: self._sample_control,
            Field.CrcSequence: self._sample_control,
            Field.CrcDelimiter: self._sample_crc_delimiter,
            Field.AckSlot: self._sample_ack_slot,
            Field.AckDelimiter: self._sample_ack_delimiter,
            Field.EndOfFrame: self._sample_end_of_frame,
            Field.Intermission: self._sample_intermission,
            Field.ActiveErrorFlag: self._sample_active_flag,
            Field.PassiveErrorFlag: self._sample_passive_flag,
            Field.ErrorFlagEcho: self._sample_error_echo,
            Field.ErrorDelimiter: self._sample_delimiter,
            Field.OverloadFlag: self._sample_overload_flag,
            Field.OverloadFlagEcho: self._sample_overload_echo,
            Field.OverloadDelimiter: self._sample_delimiter,
            Field.SuspendTransmission: self._sample_suspend
        }

        self.reset()

    def reset(self):
        '''Return to the initial state'''
        self.field = Field.Synchronize
        self.bit_count = 0
        self.byte_count = 0
        self.tx_bit = RECESSIVE

        self.transmitting = False
        self.was_transmitter = False
        self.startup = True
        self._tx = None
        self._tx_request = None
        self._tx_complete = False
        self._may_join = True

        self._clear_rx()
        self._crc_ok = False

        self._last_error = None
        self._arb_stuff_error = False
        self._tec_deferred = False
        self._dominant_seen = False
        self._own_active_flag = False
        self._flag_level = RECESSIVE

        self.stuffer.reset()
        self.crc.reset()
        self.bit_error.reset()
        self._clear_outputs()

    def _clear_outputs(self):
        self.events = []
        self.rx_valid = False
        self.rx_frame = None
        self.tx_ready = False
        self.frame_start = False
        self.transition = False

    def _clear_rx(self):
        self._rx_id = 0
        self._rx_ext = 0
        self._rx_rtr = 0
        self._rx_ide = 0
        self._rx_dlc = 0
        self._rx_len = 0
        self._rx_data = []
        self._rx_byte = 0
        self._rx_crc = 0

    @property
    def bus_idle(self):
        '''True while an edge on the bus may start a frame (hard synchronization)'''
        return self.field in (Field.Synchronize, Field.BusIdle, Field.SuspendTransmission) or \
            (self.field == Field.Intermission and self.bit_count == INTERMISSION_BITS - 1)

    @property
    def error_state(self):
        return self.fault.error_state

    def step(self, sample, transmit, bit, hard_sync, tx_frame=None, tx_valid=False):
        '''Advance the state machine by one base clock cycle

        sample (bool)
            Sample pulse from the bit timing engine

        transmit (bool)
            Transmit pulse from the bit timing engine

        bit (int)
            The sampled bus level (valid with sample)

        hard_sync (bool)
            Hard synchronization pulse from the bit timing engine

        tx_frame (CANFrame or None)
            Frame to transmit. Must stay unchanged until tx_ready.

        tx_valid (bool)
            tx_frame holds a frame to transmit
        '''
        self._clear_outputs()
        self._tx_request = tx_frame if tx_valid else None

        if hard_sync:
            self._on_hard_sync()
        if sample:
            self._on_sample(bit)
        if transmit:
            self._on_transmit()

    ###########################################################################
    # Helpers

    def _goto(self, field):
        '''Move to a new field. Position counters always restart at zero.'''
        self.field = field
        self.bit_count = 0
        self.byte_count = 0
        self.transition = True

    def _event(self, kind):
        self.events.append(kind)
        logger.debug('%s: %s in %s', self.name, MACEvent(kind), Field(self.field))

    def _drive(self, bit):
        self.tx_bit = RECESSIVE if self.test_mode == TestMode.ListenOnly else bit

    def _may_transmit(self):
        return self._tx_request is not None and self.test_mode != TestMode.ListenOnly \
            and not self.fault.bus_off

    def _must_suspend(self):
        return self.was_transmitter and self.fault.error_state == ErrorState.Passive

    def _flag_passive(self):
        return self.fault.error_state == ErrorState.Passive or self.test_mode == TestMode.ListenOnly

    def _begin_transmission(self):
        self.transmitting = True
        self._tx = self._tx_request
        logger.debug('%s: transmit %r', self.name, self._tx)

    def _penalize(self, n):
        '''Apply a counter penalty for the role of this node'''
        if self.transmitting:
            self.fault.increase_tec(n)
        else:
            self.fault.increase_rec(n)

    def _check_bus_off(self):
        '''Enter bus-off when the transmit counter has crossed the limit'''
        if not self.fault.bus_off:
            return False

        logger.warning('%s: bus-off', self.name)
        self.transmitting = False
        self._tx_complete = False
        self._tec_deferred = False
        self._goto(Field.Synchronize)
        self.tx_bit = RECESSIVE
        return True

    ###########################################################################
    # Transmit side

    def _on_hard_sync(self):
        if self.field == Field.BusIdle or \
            (self.field == Field.Intermission and self.bit_count == INTERMISSION_BITS - 1):

            if self.field == Field.Intermission:
                self._end_of_frame_cycle()
                self._may_join = not self._must_suspend()
            else:
                self._may_join = True

            self._goto(Field.StartOfFrame)
            if self._may_join and not self.transmitting and self._may_transmit():
                self._begin_transmission()
                self._drive(DOMINANT)

    def _on_transmit(self):
        field = self.field

        if self.fault.bus_off:
            self.tx_bit = RECESSIVE

        elif field == Field.BusIdle:
            if self._may_transmit():
                self._begin_transmission()
                self._goto(Field.StartOfFrame)
                self._drive(DOMINANT)
            else:
                self._drive(RECESSIVE)

        elif field == Field.StartOfFrame:
            self._drive(DOMINANT if self.transmitting else RECESSIVE)

        elif field in STUFFED_FIELDS:
            if self.transmitting:
                self._drive(self.stuffer.next_tx(self._content_bit()))
            else:
                self._drive(RECESSIVE)

        elif field == Field.AckSlot:
            ack = not self.transmitting and self._crc_ok
            self._drive(DOMINANT if ack else RECESSIVE)

        elif field in (Field.ActiveErrorFlag, Field.OverloadFlag):
            self._drive(DOMINANT)

        else:
            self._drive(RECESSIVE)

    def _content_bit(self):
        '''The frame content bit due at the current position'''
        field = self.field
        c = self.bit_count
        tx = self._tx

        if field == Field.Identifier:
            return bit_at(tx.ident >> 18, c, ID_BITS)
        elif field == Field.RtrSrr:
            return RECESSIVE if tx.ide else tx.rtr
        elif field == Field.Ide:
            return tx.ide
        elif field == Field.ExtendedIdentifier:
            return bit_at(tx.ident & 0x3FFFF, c, EXT_ID_BITS)
        elif field == Field.ExtendedRtr:
            return tx.rtr
        elif field in (Field.Reserved1, Field.Reserved0):
            return DOMINANT
        elif field == Field.Dlc:
            return bit_at(tx.dlc, c, DLC_BITS)
        elif field == Field.Data:
            return bit_at(tx.data_bytes[self.byte_count], c, 8)
        elif field == Field.CrcSequence:
            return self.crc.crc_bit(c)
        else: # CRC delimiter
            return RECESSIVE

    ###########################################################################
    # Receive side

    def _on_sample(self, bit):
        self.bit_error.compare(self.tx_bit, bit)
        field = self.field

        if field in STUFFED_FIELDS and field != Field.StartOfFrame:
            violation = self.stuffer.check_rx(bit)
            if self.stuffer.rx_stuff_bit:
                if violation:
                    if self.transmitting and field in ARBITRATION_FIELDS:
                        self._arb_stuff_error = True
                    self._error(MACEvent.StuffError)
                elif self.transmitting and self.bit_error.mismatch:
                    self._error(MACEvent.BitError)
                # Stuff bits carry no field content
                return

        self._sample_handlers[field](bit)

    def _sample_synchronize(self, bit):
        if self.fault.bus_off:
            return

        if bit == RECESSIVE:
            self.bit_count += 1
            if self.bit_count >= IDLE_DETECT_BITS:
                self._goto(Field.BusIdle)
        else:
            self.bit_count = 0

    def _sample_bus_idle(self, bit):
        if bit == DOMINANT:
            self._start_of_frame(join=True)

    def _sample_start_of_frame(self, bit):
        if bit == DOMINANT:
            self._start_of_frame(join=self._may_join)
        elif self.transmitting:
            self._error(MACEvent.BitError)
        else: # Glitch
            self._goto(Field.BusIdle)

    def _start_of_frame(self, join):
        '''Process a sampled SOF bit'''
        if join and not self.transmitting and self._may_transmit():
            # Another node started first; take part in arbitration
            self._begin_transmission()

        self.frame_start = True
        self.crc.reset()
        self.crc.update(DOMINANT)
        self.stuffer.reset()
        self.stuffer.rx.observe(DOMINANT)
        self.stuffer.tx.observe(DOMINANT)

        self._clear_rx()
        self._crc_ok = False
        self._tx_complete = False
        self._arb_stuff_error = False

        self._goto(Field.Identifier)

    def _sample_arbitration(self, bit):
        if self.transmitting:
            if self.bit_error.overwritten:
                self.transmitting = False
                self._event(MACEvent.ArbitrationLost)
            elif self.bit_error.mismatch:
                self._error(MACEvent.BitError)
                return

        self.crc.update(bit)
        field = self.field

        if field == Field.Identifier:
            self._rx_id = (self._rx_id << 1) | bit
            self.bit_count += 1
            if self.bit_count == ID_BITS:
                self._goto(Field.RtrSrr)

        elif field == Field.RtrSrr:
            self._rx_rtr = bit
            self._goto(Field.Ide)

        elif field == Field.Ide:
            self._rx_ide = bit
            self._goto(Field.ExtendedIdentifier if bit else Field.Reserved0)

        elif field == Field.ExtendedIdentifier:
            self._rx_ext = (self._rx_ext << 1) | bit
            self.bit_count += 1
            if self.bit_count == EXT_ID_BITS:
                self._goto(Field.ExtendedRtr)

        else: # ExtendedRtr
            self._rx_rtr = bit
            self._goto(Field.Reserved1)

    def _sample_control(self, bit):
        if self.transmitting and self.bit_error.mismatch:
            self._error(MACEvent.BitError)
            return

        field = self.field

        if field == Field.Reserved1:
            # Either polarity is accepted
            self.crc.update(bit)
            self._goto(Field.Reserved0)

        elif field == Field.Reserved0:
            self.crc.update(bit)
            self._goto(Field.Dlc)

        elif field == Field.Dlc:
            self.crc.update(bit)
            self._rx_dlc = (self._rx_dlc << 1) | bit
            self.bit_count += 1
            if self.bit_count == DLC_BITS:
                self._rx_len = 0 if self._rx_rtr else min(self._rx_dlc, 8)
                if self._rx_len > 0:
                    self._goto(Field.Data)
                else:
                    self._enter_crc()

        elif field == Field.Data:
            self.crc.update(bit)
            self._rx_byte = (self._rx_byte << 1) | bit
            self.bit_count += 1
            if self.bit_count == 8:
                self._rx_data.append(self._rx_byte)
                self._rx_byte = 0
                self.bit_count = 0
                self.byte_count += 1
                if self.byte_count == self._rx_len:
                    self._enter_crc()

        else: # CrcSequence
            self._rx_crc = (self._rx_crc << 1) | bit
            self.bit_count += 1
            if self.bit_count == CRC_BITS:
                self._crc_ok = self._rx_crc == self.crc.crc
                self._goto(Field.CrcDelimiter)

    def _enter_crc(self):
        self.crc.freeze()
        self._goto(Field.CrcSequence)

    def _sample_crc_delimiter(self, bit):
        if bit == DOMINANT:
            self._error(MACEvent.FormError)
        else:
            self._goto(Field.AckSlot)

    def _sample_ack_slot(self, bit):
        if self.transmitting:
            if bit == DOMINANT:
                self.startup = False
            elif self.test_mode == TestMode.Normal:
                self._error(MACEvent.AckError)
                return
        elif self.bit_error.suppressed:
            # Our acknowledgment did not make it onto the bus
            self._error(MACEvent.BitError)
            return

        self._goto(Field.AckDelimiter)

    def _sample_ack_delimiter(self, bit):
        if bit == DOMINANT:
            self._error(MACEvent.FormError)
        elif not self.transmitting and not self._crc_ok:
            self._error(MACEvent.CRCError)
        else:
            self._goto(Field.EndOfFrame)

    def _sample_end_of_frame(self, bit):
        if bit == DOMINANT:
            if self.bit_count < EOF_BITS - 1:
                self._error(MACEvent.FormError)
            else:
                # The frame is valid for the transmitter at the last EOF bit
                if self.transmitting:
                    self._tx_complete = True
                self._overload()
            return

        self.bit_count += 1
        if self.bit_count == EOF_BITS - 1:
            # Receivers accept the frame at the last but one EOF bit
            self._frame_received()
        elif self.bit_count == EOF_BITS:
            if self.transmitting:
                self._tx_complete = True
            self._goto(Field.Intermission)

    def _frame_received(self):
        if self.transmitting and self.test_mode != TestMode.Loopback:
            return

        ident = self._rx_id << 18
        if self._rx_ide:
            ident |= self._rx_ext

        self.rx_frame = CANFrame.from_fields(ident, self._rx_ide, self._rx_rtr, self._rx_dlc, self._rx_data)
        self.rx_valid = True
        logger.debug('%s: received %r', self.name, self.rx_frame)

        if not self.transmitting:
            self.fault.decrease_rec(1)

    def _end_of_frame_cycle(self):
        self.was_transmitter = self.transmitting
        self.transmitting = False

    def _sample_intermission(self, bit):
        if self.bit_count == 0 and self._tx_complete:
            self._tx_complete = False
            self.tx_ready = True
            self.fault.decrease_tec(1)
            logger.debug('%s: transmit complete', self.name)

        if bit == DOMINANT:
            if self.bit_count < INTERMISSION_BITS - 1:
                self._overload()
            else:
                # Start of frame without a preceding edge
                self._on_hard_sync()
                self._sample_start_of_frame(bit)
            return

        self.bit_count += 1
        if self.bit_count == INTERMISSION_BITS:
            self._end_of_frame_cycle()
            if self._must_suspend() and self._tx_request is not None:
                self._goto(Field.SuspendTransmission)
            else:
                self._goto(Field.BusIdle)

    def _sample_suspend(self, bit):
        if bit == DOMINANT:
            self._start_of_frame(join=False)
            return

        self.bit_count += 1
        if self.bit_count == SUSPEND_BITS:
            self._goto(Field.BusIdle)

    ###########################################################################
    # Error and overload frames

    def _error(self, kind):
        '''Handle a protocol violation and start an error flag'''
        self._event(kind)
        self._last_error = kind

        passive = self._flag_passive()
        if self.transmitting:
            exempt = kind == MACEvent.StuffError and self._arb_stuff_error
            if passive:
                # Penalty is applied when the passive flag completes
                self._tec_deferred = not exempt
            elif not exempt:
                self.fault.increase_tec(8)
        else:
            self.fault.increase_rec(1)

        if self._check_bus_off():
            return

        self._start_error_flag(passive)

    def _start_error_flag(self, passive):
        self._dominant_seen = False
        self._own_active_flag = not passive
        self._goto(Field.PassiveErrorFlag if passive else Field.ActiveErrorFlag)

    def _sample_active_flag(self, bit):
        if self.bit_error.suppressed:
            # Our flag was not seen on the bus: extra penalty and a new flag
            self._event(MACEvent.BitError)
            self._last_error = MACEvent.BitError
            self._penalize(8)
            if self._check_bus_off():
                return
            self._tec_deferred = False
            self._start_error_flag(self._flag_passive())
            return

        self.bit_count += 1
        if self.bit_count == FLAG_BITS:
            self._goto(Field.ErrorFlagEcho)

    def _sample_passive_flag(self, bit):
        if bit == DOMINANT:
            self._dominant_seen = True

        # Six consecutive bits of equal polarity complete the flag
        if self.bit_count > 0 and bit == self._flag_level:
            self.bit_count += 1
        else:
            self.bit_count = 1
        self._flag_level = bit

        if self.bit_count == FLAG_BITS:
            self._passive_flag_complete()
            if self._check_bus_off():
                return
            self._goto(Field.ErrorFlagEcho)

    def _passive_flag_complete(self):
        if not (self.transmitting and self._tec_deferred):
            return

        self._tec_deferred = False
        ack_error = self._last_error == MACEvent.AckError

        if ack_error and not self._dominant_seen:
            return
        if self._last_error == MACEvent.StuffError and self._arb_stuff_error:
            return
        if ack_error and self.startup and self.fault.tec + 8 >= BUS_OFF_LIMIT:
            return

        self.fault.increase_tec(8)

    def _sample_error_echo(self, bit):
        if bit == RECESSIVE:
            # First bit of the error delimiter
            self._goto(Field.ErrorDelimiter)
            return

        if self.bit_count == 0 and self._own_active_flag and not self.transmitting:
            self.fault.increase_rec(8)

        self.bit_count += 1
        if self.bit_count % ECHO_PENALTY_BITS == 0:
            self._penalize(8)
            self._check_bus_off()

    def _sample_delimiter(self, bit):
        # The echo field consumed the first delimiter bit
        if bit == DOMINANT:
            if self.bit_count == DELIMITER_BITS - 2:
                self._overload()
            else:
                self._error(MACEvent.FormError)
            return

        self.bit_count += 1
        if self.bit_count == DELIMITER_BITS - 1:
            self._goto(Field.Intermission)

    def _overload(self):
        self._event(MACEvent.Overload)
        self._goto(Field.OverloadFlag)

    def _sample_overload_flag(self, bit):
        if self.bit_error.suppressed:
            self._error(MACEvent.BitError)
            return

        self.bit_count += 1
        if self.bit_count == FLAG_BITS:
            self._goto(Field.OverloadFlagEcho)

    def _sample_overload_echo(self, bit):
        if bit == RECESSIVE:
            self._goto(Field.OverloadDelimiter)
        else:
            self.bit_count += 1
