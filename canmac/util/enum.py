#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Enumeration support
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

class Enum(object):
    '''Base class for enumeration classes
    
    This provides a name() class method that will return the string
    attribute name for an encoded enumeration value.
    
    e.g.
    
    >>> class Level(Enum):
    ...     Dominant = 0
    ...     Recessive = 1
        
    >>> Level.name(Level.Recessive)
    'Recessive'
    
    >>> Level.name(0, full_name=True)
    'Level.Dominant'

    "Instantiating" the Enum sub-class calls the name() method as well:
    
    >>> Level(1, full_name=False)
    'Recessive'
    
    Values stay plain ints so they can be compared and stored in state
    registers without conversion.
    '''

    @classmethod
    def name(cls, value, full_name=False):
        '''Lookup the enumeration name with the provided value

        value (hashable)
            A hashable Enum value (typically int) to find a name for.

        full_name (bool)
            Include full name of Enum object in result

        Returns a string for the Enum attribute associated with value.
        '''
        
        try:
            enum_lookup = cls.__dict__['_enum_lookup']
        except KeyError:
            # Build inverse dict of class attributes with their values as key
            enum_lookup = dict((v, k) for k, v in cls.__dict__.items() \
                if k[0] != '_' and not callable(v) and not isinstance(v, (classmethod, staticmethod)))
            cls._enum_lookup = enum_lookup
        
        try:
            aname = enum_lookup[value]
            prefix = cls.__name__ + '.' if full_name else ''
            return prefix + aname

        except KeyError:
            return 'unknown'

    @classmethod
    def values(cls):
        '''Returns a sorted list of the enumeration values'''
        cls.name(None) # Populate the lookup table
        return sorted(cls.__dict__['_enum_lookup'].keys())

    def __new__(cls, value, full_name=False):
        '''Override class instantitation to perform name lookup instead'''
        return cls.name(value, full_name)
