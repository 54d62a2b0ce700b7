#!/usr/bin/python
# -*- coding: utf-8 -*-

'''Manage Canmac configuration data
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

import configparser
import logging
import os

from canmac.mac.fields import TestMode

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    '''Error for invalid configuration values'''
    pass


class ConfigSettings(object):
    '''Container for general canmac library settings

    These are the defaults used when a controller is built without an explicit
    CANTiming object.
    '''
    def __init__(self):
        self.prescaler = 1            # Base clock cycles per time quantum
        self.tseg1 = 5                # Phase segment 1 (incl. propagation) in quanta
        self.tseg2 = 2                # Phase segment 2 in quanta
        self.sjw = 1                  # Synchronization jump width in quanta
        self.test_mode = 'normal'     # normal, listen_only or loopback
        self.log_level = 'WARNING'
        self.config_source = 'defaults'
        self.config_path = 'unknown'

    @property
    def bit_quanta(self):
        '''Number of quanta in one nominal bit time'''
        return 1 + self.tseg1 + self.tseg2

    def as_dict(self):
        '''Return the timing and mode settings as a dict'''
        return {
            'prescaler': self.prescaler,
            'tseg1': self.tseg1,
            'tseg2': self.tseg2,
            'sjw': self.sjw,
            'test_mode': self.test_mode
        }


_int_options = ('prescaler', 'tseg1', 'tseg2', 'sjw')


def _to_int(name, value):
    try:
        return int(value, 0) if isinstance(value, str) else int(value)
    except ValueError:
        raise ConfigError('Invalid value for "{}": {}'.format(name, value))


def _set_test_mode(value):
    try:
        mode = TestMode.from_name(value)
    except ValueError as e:
        raise ConfigError(str(e))
    settings.test_mode = TestMode.config_name(mode)


def _parse_config(config_path=None):
    '''Read the library configuration file if it exists'''
    config = configparser.ConfigParser()
    if config_path is None:
        canmac_dir = os.path.dirname(os.path.abspath(__file__))
        config_path = os.path.join(canmac_dir, 'canmac.cfg')
    config.read(config_path)

    settings.config_path = config_path

    if 'timing' in config.sections():
        for opt in _int_options:
            if config.has_option('timing', opt):
                setattr(settings, opt, _to_int(opt, config.get('timing', opt)))

        if config.has_option('timing', 'test_mode'):
            _set_test_mode(config.get('timing', 'test_mode'))

        settings.config_source = config_path

    if 'logging' in config.sections() and config.has_option('logging', 'level'):
        settings.log_level = config.get('logging', 'level').upper()


def _parse_environment():
    '''Apply overrides from CANMAC_* environment variables'''
    for opt in _int_options:
        env_value = os.getenv('CANMAC_' + opt.upper())
        if env_value is not None:
            setattr(settings, opt, _to_int(opt, env_value))
            settings.config_source = 'environment'

    env_mode = os.getenv('CANMAC_TEST_MODE')
    if env_mode is not None:
        _set_test_mode(env_mode)

    env_level = os.getenv('CANMAC_LOG_LEVEL')
    if env_level is not None:
        settings.log_level = env_level.upper()


def load_settings(config_path=None):
    '''Rebuild the global settings from defaults, a config file and the environment

    config_path (string or None)
        Path to a configuration file. The canmac.cfg file next to the package is
        used when None.

    Returns the refreshed settings object.
    '''
    global settings
    settings = ConfigSettings()
    _parse_config(config_path)
    _parse_environment()
    return settings


def write_config(cfg_path):
    '''Write a configuration file from the current settings'''
    config = configparser.ConfigParser()
    config.add_section('timing')
    for opt, value in sorted(settings.as_dict().items()):
        config.set('timing', opt, str(value))

    config.add_section('logging')
    config.set('logging', 'level', settings.log_level)

    with open(cfg_path, 'w') as fh:
        config.write(fh)


def _load_initial_settings():
    '''Load the settings at import time

    Invalid values are reported and the defaults are used instead.
    '''
    global settings
    try:
        load_settings()
    except ConfigError as e:
        logger.warning('Ignoring invalid configuration: %s', e)
        settings = ConfigSettings()
    return settings


# Parse settings when this module loads
settings = ConfigSettings()
_load_initial_settings()
