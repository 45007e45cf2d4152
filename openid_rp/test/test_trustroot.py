import unittest

from openid_rp.trustroot import Realm, RealmError, validateURL


class ParseTest(unittest.TestCase):
    bad = [
        'baz.org',
        '*.foo.com',
        'http://*.schtuff.*/',
        'ftp://foo.com',
        'ftp://*.foo.com',
        'http://*.foo.com:80:90/',
        'http://foo.*.com/',
        'http://*foo.com/',
        'http://foo.com/invalid#fragment',
        'http://foo.com:port/',
        '',
        ' ',
        None,
    ]

    insane = [
        'http:///',
        'http://*/',
        'https://*/',
        'http://*.com',
        'http://*.com/',
        'https://*.com/',
        'http://*.com.au/',
        'http://*.co.uk/',
        'http://*.foo.notatld/',
        'https://*.foo.notatld/',
        'http://*.museum/',
        'http://www.schtuff.anything/',
    ]

    sane = [
        'http://*.schtuff.com./',
        'http://*.schtuff.com/',
        'http://*.foo.schtuff.com/',
        'http://*.schtuff.com',
        'http://www.schtuff.com/',
        'http://www.schtuff.com./',
        'http://www.schutff.com',
        'http://*.this.that.schtuff.com/',
        'http://*.foo.com/path',
        'http://*.foo.com/path?action=foo2',
        'http://x.foo.com/path?action=foo2',
        'http://localhost:8081/',
        'http://localhost:8082/?action=openid',
        'https://foo.com/',
        'http://goathack.livejournal.org:8020/openid/login.bml',
        'http://*.co.uk.com/',
        'http://*.foo.com.au/',
        'http://kink.fm/should/be/sane',
    ]

    def test_bad(self):
        for case in self.bad:
            self.assertRaises(RealmError, Realm.parse, case)

    def test_insane(self):
        for case in self.insane:
            realm = Realm.parse(case)
            self.assertFalse(realm.isSane(), case)

    def test_sane(self):
        for case in self.sane:
            self.assertTrue(Realm.parse(case).isSane(), case)

    def test_str(self):
        realm = Realm.parse('http://*.example.com/')
        self.assertEqual(str(realm), 'http://*.example.com/')
        self.assertEqual(repr(realm), "Realm('http://*.example.com/')")


class MatchTest(unittest.TestCase):
    matching = [
        ('http://*/', 'http://cnn.com/'),
        ('http://*/', 'http://livejournal.com/'),
        ('http://*/', 'http://met.museum/'),
        ('http://localhost:8081/x?action=openid', 'http://localhost:8081/x?action=openid'),
        ('http://*.foo.com', 'http://b.foo.com'),
        ('http://*.foo.com', 'http://b.foo.com/'),
        ('http://*.foo.com/', 'http://b.foo.com'),
        ('http://b.foo.com', 'http://b.foo.com'),
        ('http://b.foo.com', 'http://b.foo.com/'),
        ('http://b.foo.com/', 'http://b.foo.com'),
        ('http://*.b.foo.com', 'http://b.foo.com'),
        ('http://*.b.foo.com', 'http://b.foo.com/'),
        ('http://*.b.foo.com/', 'http://b.foo.com'),
        ('http://*.b.foo.com', 'http://x.b.foo.com'),
        ('http://*.b.foo.com', 'http://w.x.b.foo.com'),
        ('http://*.bar.co.uk', 'http://www.bar.co.uk'),
        ('http://*.uoregon.edu', 'http://x.cs.uoregon.edu'),
        ('http://x.com/abc', 'http://x.com/abc'),
        ('http://x.com/abc', 'http://x.com/abc/def'),
        ('http://10.0.0.1/abc', 'http://10.0.0.1/abc'),
        ('http://*.x.com', 'http://x.com/gallery'),
        ('http://foo.com/?x=y', 'http://foo.com/?x=y&a=b'),
        ('http://foo.com/x', 'http://foo.com/x?action=openid'),
        ('http://*.foo.com/path', 'http://www.foo.com/path'),
        ('http://rp.example.com/', 'http://rp.example.com/users/auth/open_id/callback'),
    ]

    not_matching = [
        ('http://*.x.com/abc', 'http://foo.x.com'),
        ('http://*.x.com/abc', 'http://*.x.com'),
        ('http://*.com/', 'http://*.com/'),
        ('http://x.com/abc', 'http://x.com/'),
        ('http://x.com/abc', 'http://x.com/a'),
        ('http://x.com/abc', 'http://x.com/ab'),
        ('http://x.com/abc', 'http://x.com/abcd'),
        ('http://*.cs.uoregon.edu', 'http://x.uoregon.edu'),
        ('http://*.foo.com', 'http://bar.com'),
        ('http://*.foo.com', 'http://www.bar.com'),
        ('http://*.bar.co.uk', 'http://xxx.co.uk'),
        ('https://foo.com', 'http://foo.com'),
        ('http://foo.com', 'https://foo.com'),
        ('http://foo.com:80', 'http://foo.com'),
        ('http://foo.com/?x=y', 'http://foo.com/?x=yz'),
        ('http://foo.com', 'http://foo.com/#fragment'),
        ('http://rp.example.com/', 'http://evil.example.com/users/auth/open_id/callback'),
    ]

    def test_matching(self):
        for realm, return_to in self.matching:
            self.assertTrue(Realm.parse(realm).validateURL(return_to), (realm, return_to))
            self.assertTrue(Realm.checkURL(realm, return_to))

    def test_not_matching(self):
        for realm, return_to in self.not_matching:
            self.assertFalse(Realm.parse(realm).validateURL(return_to), (realm, return_to))

    def test_checkURL_bad_realm(self):
        self.assertFalse(Realm.checkURL('baz.org', 'http://baz.org/'))


class ValidateURLTest(unittest.TestCase):
    def test_valid(self):
        self.assertIsNone(validateURL('http://rp.example.com/', 'http://rp.example.com/callback'))

    def test_outside(self):
        with self.assertRaisesRegex(RealmError, 'is not within realm'):
            validateURL('http://rp.example.com/', 'http://evil.example.com/callback')

    def test_bad_realm(self):
        self.assertRaises(RealmError, validateURL, 'ftp://rp.example.com/', 'http://rp.example.com/')
