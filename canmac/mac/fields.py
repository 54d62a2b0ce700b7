#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Enumerations shared by the MAC components
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

from canmac.util.enum import Enum


# Bus levels
DOMINANT = 0
RECESSIVE = 1


class Field(Enum):
    '''Protocol fields walked by the bit stream processor'''
    Synchronize = 0
    BusIdle = 1
    StartOfFrame = 2
    Identifier = 3
    RtrSrr = 4
    Ide = 5
    Reserved1 = 6
    Reserved0 = 7
    ExtendedIdentifier = 8
    ExtendedRtr = 9
    Dlc = 10
    Data = 11
    CrcSequence = 12
    CrcDelimiter = 13
    AckSlot = 14
    AckDelimiter = 15
    EndOfFrame = 16
    Intermission = 17
    ActiveErrorFlag = 18
    PassiveErrorFlag = 19
    ErrorFlagEcho = 20
    ErrorDelimiter = 21
    OverloadFlag = 22
    OverloadFlagEcho = 23
    OverloadDelimiter = 24
    SuspendTransmission = 25


# Fields where identifier priority is resolved
ARBITRATION_FIELDS = frozenset((Field.StartOfFrame, Field.Identifier, Field.RtrSrr, Field.Ide, \
    Field.ExtendedIdentifier, Field.ExtendedRtr))

# Fields subject to bit stuffing. A stuff bit can follow the last CRC bit so
# the check also runs while the CRC delimiter is pending.
STUFFED_FIELDS = ARBITRATION_FIELDS | frozenset((Field.Reserved1, Field.Reserved0, Field.Dlc, \
    Field.Data, Field.CrcSequence, Field.CrcDelimiter))

# Field lengths in bits
ID_BITS = 11
EXT_ID_BITS = 18
DLC_BITS = 4
CRC_BITS = 15
EOF_BITS = 7
INTERMISSION_BITS = 3
FLAG_BITS = 6
DELIMITER_BITS = 8
SUSPEND_BITS = 8
IDLE_DETECT_BITS = 11
ECHO_PENALTY_BITS = 8


class MACEvent(Enum):
    '''Enumeration for one-step event pulses'''
    StuffError = 1
    FormError = 2
    AckError = 3
    BitError = 4
    ArbitrationLost = 5
    CRCError = 6
    Overload = 7


# Events that are protocol errors as opposed to status notifications
ERROR_EVENTS = frozenset((MACEvent.StuffError, MACEvent.FormError, MACEvent.AckError, \
    MACEvent.BitError, MACEvent.CRCError))


class TestMode(Enum):
    '''Enumeration of controller operating modes'''
    Normal = 0
    ListenOnly = 1
    Loopback = 2

    __test__ = False # Keep test collectors away from this class

    _config_names = {Normal: 'normal', ListenOnly: 'listen_only', Loopback: 'loopback'}

    @classmethod
    def from_name(cls, name):
        '''Convert a configuration string to a TestMode value

        Case is ignored and "-" may be used in place of "_".
        Raises ValueError for an unknown name.
        '''
        key = name.strip().lower().replace('-', '_')
        for value, cfg_name in cls._config_names.items():
            if cfg_name == key:
                return value

        raise ValueError('Invalid test mode "{}"'.format(name))

    @classmethod
    def config_name(cls, value):
        '''The configuration string for a TestMode value'''
        return cls._config_names[value]
