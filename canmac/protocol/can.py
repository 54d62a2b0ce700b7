#!/usr/bin/python
# -*- coding: utf-8 -*-

'''CAN frame model and reference bit-level codec

These are the reference encodings the MAC engine is checked against. They work
on whole frames rather than one bit at a time.
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

from canmac.util.bitops import split_bits, join_bits
import canmac.sigproc as sigp


class FrameError(ValueError):
    '''Error for frames that cannot be represented on the bus'''
    pass

class StuffError(ValueError):
    '''Error for a sixth identical bit found while destuffing'''
    pass


# Bit counts of the unstuffed fixed-form trailer
CRC_BITS = 15
EOF_BITS = 7
CRC_POLY = 0x4599

STD_ID_MASK = 0x7FF
EXT_ID_MASK = 0x1FFFFFFF


class CANFrame(object):
    '''Base class for CAN Data and Remote frames'''
    def __init__(self, id, data, dlc=None, crc=None, ack=True, trim_bits=0, ifs_bits=3):
        '''
        id (int)
            CAN frame ID (the 11-bit base ID)

        data (sequence of int or None)
            Data bytes for a data frame. None or empty list for a remote frame.

        dlc (int or None)
            The Data Length Code (number of data bytes) for the frame.

        crc (int or None)
            Force the CRC for the frame. Leave as None to generate CRC automatically.

        ack (bool)
            Indicates that the ack field is dominant (True) or recessive (False)
            when synthesizing the frame.

        trim_bits (int)
            The number of bits to trim off the end of the frame. Used to simulate error conditions.

        ifs_bits (int)
            The number of Inter-Frame Space bits at the start of this frame. Normally 3.
        '''
        if data is None:
            data = []
        if len(data) > 8:
            raise FrameError('Too many data bytes: {}'.format(len(data)))
        if dlc is not None and not 0 <= dlc <= 8:
            raise FrameError('DLC out of range: {}'.format(dlc))
        if any(not 0 <= b <= 0xFF for b in data):
            raise FrameError('Data bytes must be in the range 0-255')

        self.id = id
        self._rtr = None
        self.ide = 0
        self._dlc = dlc
        self.data = list(data)
        self._crc = crc
        self.ack = ack
        self.trim_bits = trim_bits
        self.ifs_bits = ifs_bits


    @classmethod
    def from_fields(cls, ident, ide, rtr, dlc, data):
        '''Build a frame from the field values assembled by a receiver

        ident (int)
            29-bit identifier superset. Standard frames use the top 11 bits.

        ide (int)
            The IDE bit. 1 for extended frames.

        rtr (int)
            The RTR bit. 1 for remote frames.

        dlc (int)
            Data length code. Values above 8 are clamped to 8.

        data (sequence of int)
            Received data bytes.

        Returns a CANStandardFrame or CANExtendedFrame.
        '''
        dlc = min(dlc, 8)
        if ide:
            cf = CANExtendedFrame(ident, data, dlc)
        else:
            cf = CANStandardFrame((ident >> 18) & STD_ID_MASK, data, dlc)
        cf.rtr = rtr

        return cf


    @property
    def rtr(self):
        if self._rtr is None:
            return 0 if len(self.data) > 0 else 1
        else:
            return self._rtr

    @rtr.setter
    def rtr(self, value):
        self._rtr = value


    @property
    def dlc(self):
        if self._dlc is None:
            return min(len(self.data), 8)
        else:
            return self._dlc

    @dlc.setter
    def dlc(self, value):
        self._dlc = value

    @property
    def data_bytes(self):
        '''The data bytes actually carried on the bus'''
        if self.rtr:
            return []
        return (self.data + [0] * 8)[:min(self.dlc, 8)]

    @property
    def ident(self):
        '''29-bit identifier superset used by the MAC engine'''
        raise NotImplementedError

    @property
    def crc(self):
        if self._crc is None:
            return join_bits(can_crc15(self.get_check_bits()))
        else:
            return self._crc

    @crc.setter
    def crc(self, value):
        self._crc = value

    def crc_is_valid(self, recv_crc=None):
        '''Check if a CRC is valid for this frame.

        recv_crc (int or None)
            The CRC to check against. If None, the CRC passed in the constructor is used.

        Returns True when the CRC is correct.
        '''
        if recv_crc is None:
            recv_crc = self.crc

        data_crc = join_bits(can_crc15(self.get_check_bits()))
        
        return recv_crc == data_crc


    def get_check_bits(self):
        '''Get the raw bits covered by the CRC (SOF through data)'''
        raise NotImplementedError

    def get_bits(self):
        '''Get the raw unstuffed bits for this frame from SOF through CRC'''
        return self.get_check_bits() + split_bits(self.crc, CRC_BITS)

    def get_edges(self, t, bit_period):
        '''Generate an edge sequence for this frame

        t (int or float)
            Start time for the edges

        bit_period (int or float)
            The period for each bit of the frame
            
        Returns a list of 2-tuples representing each edge.
        '''
        frame_bits = can_frame_bits(self)

        if self.trim_bits > 0:
            frame_bits = frame_bits[:-self.trim_bits]

        edges = []

        for b in frame_bits:
            edges.append((t, b))
            t += bit_period

        return edges

    def __eq__(self, other):
        if not isinstance(other, CANFrame): return False

        if self.ide != other.ide or self.rtr != other.rtr or self.dlc != other.dlc:
            return False

        if self.ide:
            if self.ident != other.ident: return False
        else:
            if (self.ident >> 18) != (other.ident >> 18): return False

        return self.data_bytes == other.data_bytes

    def __ne__(self, other):
        return not (self == other)

    __hash__ = None

    @property
    def full_id(self):
        '''The full 11-bit ID for this frame'''
        return self.id & STD_ID_MASK


class CANStandardFrame(CANFrame):
    '''CAN frame format for 11-bit ID'''
    def __init__(self, id, data, dlc=None, crc=None, ack=True, trim_bits=0, ifs_bits=3):
        '''
        id (int)
            11-bit CAN frame ID

        The remaining parameters are the same as for CANFrame.
        '''
        if not 0 <= id <= STD_ID_MASK:
            raise FrameError('Standard ID out of range: {}'.format(hex(id)))

        CANFrame.__init__(self, id, data, dlc, crc, ack, trim_bits, ifs_bits)
        self.ide = 0
        self.r0 = 0

    def __repr__(self):
        return 'CANStandardFrame({}, {}, {}, {})'.format(hex(self.id), self.data, \
            self.dlc, hex(self.crc))

    @property
    def ident(self):
        return (self.id & STD_ID_MASK) << 18

    def get_check_bits(self):
        '''Generate standard frame bits'''
        # Standard frame format:
        #  SOF, ID, RTR, IDE, r0, DLC, Data, CRC, CRC delim., ACK slot, ACK delim., EOF
        # Stuffing is applied until the CRC delimiter is reached
        check_bits = [0] # SOF
        check_bits += split_bits(self.id, 11)
        check_bits += [self.rtr, self.ide, self.r0]
        check_bits += split_bits(self.dlc, 4)
        for b in self.data_bytes:
            check_bits += split_bits(b, 8)

        return check_bits


class CANExtendedFrame(CANFrame):
    '''CAN frame format for 29-bit ID'''
    def __init__(self, full_id, data, dlc=None, crc=None, ack=True, trim_bits=0, ifs_bits=3):
        '''
        full_id (int)
            29-bit CAN frame ID

        The remaining parameters are the same as for CANFrame.
        '''
        if not 0 <= full_id <= EXT_ID_MASK:
            raise FrameError('Extended ID out of range: {}'.format(hex(full_id)))

        CANFrame.__init__(self, (full_id >> 18) & STD_ID_MASK, data, dlc, crc, ack, trim_bits, ifs_bits)
        
        self.srr = 1 # Replaces RTR bit in standard frame format; always 1
        self.ide = 1 # Always 1 for extended format
        self.id_ext = full_id & 0x3FFFF
        
        self.r0 = 0
        self.r1 = 0

    def __repr__(self):
        return 'CANExtendedFrame({}, {}, {}, {})'.format(hex(self.full_id), self.data, \
            self.dlc, hex(self.crc))

    @property
    def ident(self):
        return self.full_id

    def get_check_bits(self):
        '''Generate extended frame bits'''
        # Extended frame format:
        #  SOF, ID, SRR, IDE, ID-EXT, RTR, r1, r0, DLC, Data, CRC, CRC delim., ACK slot, ACK delim., EOF
        check_bits = [0] # SOF
        check_bits += split_bits(self.id, 11)
        check_bits += [self.srr, self.ide]
        check_bits += split_bits(self.id_ext, 18)
        check_bits += [self.rtr, self.r1, self.r0]
        check_bits += split_bits(self.dlc, 4)
        for b in self.data_bytes:
            check_bits += split_bits(b, 8)

        return check_bits

    @property
    def full_id(self):
        '''The full 29-bit ID for this frame'''
        return ((self.id & STD_ID_MASK) << 18) + (self.id_ext & 0x3FFFF)


def can_stuff(bits):
    '''Perform CAN bit-stuffing

    bits (sequence of int)
        Unstuffed bits in transmission order

    Returns a list of bits with a complementary bit after every run of 5.
    '''
    sbits = []
    same_count = 0
    prev_bit = None
    for b in bits:
        sbits.append(b)

        if b == prev_bit:
            same_count += 1
        else:
            same_count = 1
            prev_bit = b

        if same_count == 5:
            # Stuff an opposite bit in the bit stream
            sbits.append(1 - b)
            same_count = 1
            prev_bit = 1 - b
    return sbits


def can_destuff(bits):
    '''Remove CAN stuff bits

    bits (sequence of int)
        Stuffed bits in transmission order

    Returns a list of the data bits.

    Raises StuffError if a stuff bit repeats the preceding run.
    '''
    dbits = []
    same_count = 0
    prev_bit = None
    expect_stuffing = False
    for i, b in enumerate(bits):
        if expect_stuffing:
            if b == prev_bit:
                raise StuffError('Stuffing violation at bit {}'.format(i))
            expect_stuffing = False
            same_count = 1
            prev_bit = b
            continue

        dbits.append(b)
        if b == prev_bit:
            same_count += 1
        else:
            same_count = 1
            prev_bit = b

        if same_count == 5:
            expect_stuffing = True

    return dbits


def can_frame_bits(frame):
    '''Build the complete on-bus bit sequence of a data or remote frame

    frame (CANFrame)
        The frame to encode

    Returns a list of bits from SOF through the last EOF bit.
    '''
    stuffed_bits = can_stuff(frame.get_bits())

    # Add delimiter and ack bits
    crc_and_ack_bits = [1, 0 if frame.ack else 1, 1]

    return stuffed_bits + crc_and_ack_bits + [1] * EOF_BITS


def can_synth(frames, bit_period, idle_start=0, idle_end=0):
    '''Generate a synthesized CAN edge stream
    
    frames (sequence of CANFrame compatible objects)
        Frames to be synthesized.

    bit_period (int or float)
        The time for one bit. With the bus simulator this is a number of base clock steps.

    idle_start (int or float)
        The amount of idle time before the transmission of frames begins.

    idle_end (int or float)
        The amount of idle time after the last frame.

    Returns an edge stream of (time, int) pairs. The first element is the initial
      state of the stream.
    '''
    return list(sigp.remove_excess_edges(_can_synth(frames, bit_period, idle_start, idle_end)))


def _can_synth(frames, bit_period, idle_start=0, idle_end=0):
    '''Core CAN synthesizer
    
    This is a generator function.
    '''
    t = 0
    yield (t, 1) # initial conditions
    t += idle_start

    for f in frames:
        t += bit_period * f.ifs_bits # Add IFS to start of data and remote frames

        edges = f.get_edges(t, bit_period)

        for e in edges:
            yield e
        
        # Update time to end of edge sequence
        t = edges[-1][0] + bit_period
 
    yield (t, 1)
    t += idle_end
    yield (t, 1) # final state


def can_crc15(d):
    '''Calculate CAN CRC-15 on data

    d (sequence of int)
        Array of integers representing 0 or 1 bits in transmission order
        
    Returns array of integers for each bit in the CRC with MSB first
    '''
    sreg = 0
    mask = 0x7fff

    for b in d:
        leftbit = (sreg & 0x4000) >> 14
        sreg = (sreg << 1) & mask
        if b != leftbit:
            sreg ^= CRC_POLY

    return split_bits(sreg, CRC_BITS)
