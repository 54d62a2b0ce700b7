from setuptools import setup
import os

# use README.rst for the long description
with open('README.rst') as fh:
    long_description = fh.read()
    
# scan the script for the version string
version_file = 'canmac/__init__.py'
version = None
with open(version_file) as fh:
    try:
        version = [line.split('=')[1].strip().strip("'") for line in fh if line.startswith('__version__')][0]
    except IndexError:
        pass

if version is None:
    raise RuntimeError('Unable to find version string in file: {0}'.format(version_file))


# Subclass build_py command to add our own hook to write a config file
from setuptools.command.build_py import build_py as _build_py

class build_py(_build_py):
    def run(self):
        cfg_path = os.path.join(self.build_lib, 'canmac', 'canmac.cfg')
        self.mkpath(os.path.dirname(cfg_path))
        print('Writing Canmac configuration file: {}'.format(cfg_path))
        self.write_config(cfg_path)

        # Read back the config file for verification
        with open(cfg_path, 'r') as f:
            for line in f:
                print('  >', line.rstrip())

        return _build_py.run(self)

    def write_config(self, cfg_path):
        import configparser as cp

        config = cp.ConfigParser()
        config.add_section('timing')
        config.set('timing', 'prescaler', '1')
        config.set('timing', 'tseg1', '5')
        config.set('timing', 'tseg2', '2')
        config.set('timing', 'sjw', '1')
        config.set('timing', 'test_mode', 'normal')
        config.add_section('logging')
        config.set('logging', 'level', 'WARNING')

        with open(cfg_path, 'w') as fh:
            config.write(fh)


setup(name='canmac',
    version=version,
    author='Kevin Thibedeau',
    author_email='kevin.thibedeau@gmail.com',
    description='A bit accurate CAN 2.0A/B medium access control engine and bus simulator',
    long_description=long_description,
    install_requires = ['numpy >= 1.7.0'],
    extras_require = {
        'test': ['unittest-xml-reporting']
    },
    packages = ['canmac', 'canmac.protocol', 'canmac.mac', 'canmac.util'],
    py_modules = ['canmac_demo'],
    cmdclass = {'build_py': build_py},
    entry_points = {
        'console_scripts': ['canmac_demo = canmac_demo:main']
    },

    include_package_data = True,
    package_data = {
        '': ['*.cfg']
    },

    test_suite = 'test',
    
    keywords='CAN controller area network MAC simulation',
    license='LGPLv3',
    classifiers=['Development Status :: 4 - Beta',
        'Operating System :: OS Independent',
        'Intended Audience :: Developers',
        'Natural Language :: English',
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: GNU Lesser General Public License v3 (LGPLv3)',
        'Topic :: Scientific/Engineering :: Electronic Design Automation (EDA)',
        'Topic :: Software Development :: Libraries :: Python Modules'
        ]

    )
