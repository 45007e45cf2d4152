# -*- coding: utf-8 -*-
from setuptools import setup

# Import version from openid_rp library itself
VERSION = __import__('openid_rp').__version__
INSTALL_REQUIRES = [
    'cryptography',
    'lxml',
    'requests',
]
EXTRAS_REQUIRE = {
    'quality': ('flake8', 'isort'),
    'tests': ('testfixtures', 'responses', 'coverage'),
}
LONG_DESCRIPTION = open('README.md').read() + '\n\n' + open('Changelog.md').read()
CLASSIFIERS = [
    'Development Status :: 4 - Beta',
    'Environment :: Web Environment',
    'Intended Audience :: Developers',
    'License :: OSI Approved :: Apache Software License',
    'Operating System :: POSIX',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Programming Language :: Python :: 3 :: Only',
    'Topic :: Internet :: WWW/HTTP',
    'Topic :: Internet :: WWW/HTTP :: Dynamic Content :: CGI Tools/Libraries',
    'Topic :: Software Development :: Libraries :: Python Modules',
    'Topic :: System :: Systems Administration :: Authentication/Directory',
]


setup(
    name='python-openid-rp',
    version=VERSION,
    description='Python OpenID 2.0 relying party library - verification of OpenID assertions.',
    long_description=LONG_DESCRIPTION,
    long_description_content_type='text/markdown',
    packages=['openid_rp',
              'openid_rp.consumer',
              'openid_rp.store',
              'openid_rp.extensions',
              ],
    python_requires='>=3.8',
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,
    # license specified by classifier.
    classifiers=CLASSIFIERS,
)
