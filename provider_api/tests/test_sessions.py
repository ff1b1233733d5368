import unittest

from provider_api.sessions import NoSessionConfiguredError, SessionPool


class TestSessionPool(unittest.TestCase):
    def test_pick_from_configured_ids(self):
        pool = SessionPool(("a", "b"))
        self.assertIn(pool.pick(), ("a", "b"))
        self.assertEqual(len(pool), 2)

    def test_empty_pool_raises(self):
        with self.assertRaises(NoSessionConfiguredError):
            SessionPool().pick()

    def test_from_authorization_header(self):
        pool = SessionPool.from_authorization("Bearer id1, id2")
        self.assertEqual(pool.session_ids, ("id1", "id2"))
        self.assertEqual(SessionPool.from_authorization(None).session_ids, ())

    def test_or_fallback(self):
        configured = SessionPool(("env",))
        self.assertEqual(SessionPool().or_fallback(configured).pick(), "env")
        self.assertEqual(SessionPool(("hdr",)).or_fallback(configured).pick(), "hdr")


if __name__ == "__main__":
    unittest.main()
