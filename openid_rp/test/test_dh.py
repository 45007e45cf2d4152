"""Test `openid_rp.dh` module."""
import os
import unittest

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.dh import DHPrivateNumbers, DHPublicNumbers

from openid_rp.constants import DEFAULT_DH_GENERATOR, DEFAULT_DH_MODULUS
from openid_rp.dh import DiffieHellman, KeyExchangeError, btwocToInt, intToBtwoc
from openid_rp.oidutil import fromBase64, toBase64


class BtwocTest(unittest.TestCase):
    cases = [
        (0, b'\x00'),
        (1, b'\x01'),
        (127, b'\x7f'),
        (128, b'\x00\x80'),
        (255, b'\x00\xff'),
        (32768, b'\x00\x80\x00'),
        (65535, b'\x00\xff\xff'),
        (65536, b'\x01\x00\x00'),
    ]

    def test_intToBtwoc(self):
        for value, data in self.cases:
            self.assertEqual(intToBtwoc(value), data)

    def test_btwocToInt(self):
        for value, data in self.cases:
            self.assertEqual(btwocToInt(data), value)
        # Padding is ignored
        self.assertEqual(btwocToInt(b'\x00\x00\x01'), 1)

    def test_default_modulus(self):
        modulus = btwocToInt(fromBase64(DEFAULT_DH_MODULUS))
        self.assertEqual(toBase64(intToBtwoc(modulus)), DEFAULT_DH_MODULUS)


class DiffieHellmanTest(unittest.TestCase):
    consumer_private_key = ('bVQh4Z81F5e57JCT1pmxADRktpYwIwhNjWkiIjg450sfYZOJ9Ntf4YHBhcBpkPyehdq/XL+yEWbZFig4wh2MdqES0X'
                            'aOPRVl7ZzsjTNgztKUYE2mhiYQd4KMmB9uLExM72ntwcdZ3/vlb0Fq8DlIx3FhqeaYsKKTsdUW/KbJcS0=')
    consumer_public_key = ('ANMxIwAeRWw5mZD3+DkoX3G6n/tuBGsjfk6R+vBW2zwve0BSlh1F0EsXlQEUuXJ+s1DQ8nFQLPYOLO0mLexXH0bSscv'
                           'zhBldH+L+fxJfoL9xoTAxk7qqT659QqErhEMtQpBy7hK5L7Qb8R2NAUZ++MPxUNB71IBd6vMG6M6MueXp')
    server_private_key = ('ANxFaZXkCVNESkYKFclilsm7tVIO1CNYy621Y44w19OPk7xE7zEZdttX/KfRSImecPpn+AATLhRZMuXzaq3KDFFTu9Nu'
                          'hSINYml2f7xZd1+lYg6YhWiojfP3YPqLIV9sj/26O1A7pTcq6jajj/8E5P+qkr6+bSQhZ0UlZiBQUyDr')
    server_public_key = ('MSJTx7cMqUBAcpLCan75t+8OSf3SZUSwivlEUYxMaHbbueKp1u4/7Fdw9sTCN3gA0iFE2dTOJpRUT4TmFomHnyIfBExdc'
                         'wbkXiQIhsSnBJkGmPuAPkKFFHtB0pKET6bWZolwP5fp4lZOgM+7FIRte5OZd5XEJIN9vBYxo6NaoRc=')
    secret = b'Rimmer ordered hot gazpacho soup'
    mac_key = 'hAYpHzbPvEHs0J2t8KYiqoxsLSmRzGfCQmwMg9taNf0='

    def makeDH(self, public_key, private_key):
        dh = DiffieHellman.fromDefaults()
        public_numbers = DHPublicNumbers(btwocToInt(fromBase64(public_key)), dh.parameter_numbers)
        dh.private_key = DHPrivateNumbers(btwocToInt(fromBase64(private_key)), public_numbers).private_key()
        return dh

    def test_defaults(self):
        dh = DiffieHellman(DEFAULT_DH_MODULUS, DEFAULT_DH_GENERATOR)
        self.assertTrue(dh.usingDefaultValues())
        self.assertEqual(dh.parameters, (DEFAULT_DH_MODULUS, DEFAULT_DH_GENERATOR))
        self.assertEqual(dh.generator, 2)

    def test_bad_parameters(self):
        self.assertRaises(KeyExchangeError, DiffieHellman, '', DEFAULT_DH_GENERATOR)
        self.assertRaises(KeyExchangeError, DiffieHellman, DEFAULT_DH_MODULUS, 'A')

    def test_public_key(self):
        dh = self.makeDH(self.server_public_key, self.server_private_key)
        self.assertEqual(dh.public_key, self.server_public_key)

    def test_fresh_keys(self):
        self.assertNotEqual(DiffieHellman.fromDefaults().public_key, DiffieHellman.fromDefaults().public_key)

    def test_mask_static(self):
        # Provider side masks the MAC key
        server_dh = self.makeDH(self.server_public_key, self.server_private_key)
        masked = server_dh.xorSecret(self.consumer_public_key, self.secret, hashes.SHA256())
        self.assertEqual(toBase64(masked), self.mac_key)

    def test_unmask_static(self):
        consumer_dh = self.makeDH(self.consumer_public_key, self.consumer_private_key)
        secret = consumer_dh.xorSecret(self.server_public_key, fromBase64(self.mac_key), hashes.SHA256())
        self.assertEqual(secret, self.secret)

    def test_shared_secret(self):
        consumer_dh = DiffieHellman.fromDefaults()
        server_dh = DiffieHellman.fromDefaults()
        shared = consumer_dh.sharedSecret(server_dh.public_key)
        self.assertEqual(shared, server_dh.sharedSecret(consumer_dh.public_key))
        self.assertLess(shared[0], 128)

    def test_mask_dynamic(self):
        for algorithm, size in ((hashes.SHA1(), 20), (hashes.SHA256(), 32)):
            consumer_dh = DiffieHellman.fromDefaults()
            server_dh = DiffieHellman.fromDefaults()
            secret = os.urandom(size)
            masked = server_dh.xorSecret(consumer_dh.public_key, secret, algorithm)
            self.assertEqual(consumer_dh.xorSecret(server_dh.public_key, masked, algorithm), secret)

    def test_secret_size_mismatch(self):
        consumer_dh = DiffieHellman.fromDefaults()
        server_dh = DiffieHellman.fromDefaults()
        self.assertRaises(KeyExchangeError, consumer_dh.xorSecret, server_dh.public_key, os.urandom(20),
                          hashes.SHA256())

    def test_bad_public_key(self):
        dh = DiffieHellman.fromDefaults()
        modulus = dh.parameters[0]
        minus_one = toBase64(intToBtwoc(dh.modulus - 1))
        for public_key in ('', 'A', 'AA==', 'AQ==', minus_one, modulus):
            self.assertRaises(KeyExchangeError, dh.sharedSecret, public_key)
            self.assertRaises(KeyExchangeError, dh.xorSecret, public_key, self.secret, hashes.SHA256())
