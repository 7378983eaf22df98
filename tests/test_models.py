import unittest

from zntracker.peer_db import Hash, InvalidAddressError, Peer, PeerAddress


class PeerAddressTests(unittest.TestCase):
    def test_round_trip(self) -> None:
        for text in ("10.0.0.1:6881", "[2001:db8::1]:15441", "tracker.example.org:80", "abcdefgh.onion:15441"):
            with self.subTest(text=text):
                self.assertEqual(str(PeerAddress.parse(text)), text)

    def test_parse_fields(self) -> None:
        addr = PeerAddress.parse("[::1]:443")
        self.assertEqual(addr, PeerAddress(host="::1", port=443))

    def test_invalid_addresses(self) -> None:
        for text in ("", "10.0.0.1", "10.0.0.1:", ":6881", "10.0.0.1:0", "10.0.0.1:70000",
                     "10.0.0.1:http", "::1:80", "[nothex]:80", "[::1]80", "bad host:80"):
            with self.subTest(text=text):
                with self.assertRaises(InvalidAddressError):
                    PeerAddress.parse(text)

    def test_non_ascii_port_digits_rejected(self) -> None:
        for text in ("10.0.0.1:²", "10.0.0.1:١٢", "[::1]:¹"):
            with self.subTest(text=text):
                with self.assertRaises(InvalidAddressError):
                    PeerAddress.parse(text)

    def test_host_with_trailing_newline_rejected(self) -> None:
        for text in ("host\n:80", "10.0.0.1\n:6881", "10.0.0.1:80\n"):
            with self.subTest(text=text):
                with self.assertRaises(InvalidAddressError):
                    PeerAddress.parse(text)

    def test_invalid_address_is_value_error(self) -> None:
        with self.assertRaises(ValueError):
            PeerAddress.parse("nope")


class HashTests(unittest.TestCase):
    def test_byte_equality(self) -> None:
        self.assertEqual(Hash(b"\x01\x02"), Hash(bytearray(b"\x01\x02")))
        self.assertNotEqual(Hash(b"\x01\x02"), Hash(b"\x01\x02\x00"))
        self.assertEqual(len({Hash(b"a"), Hash(b"a"), Hash(b"b")}), 2)
        self.assertEqual(Hash(b"\xab\xcd").hex(), "abcd")

    def test_rejects_text(self) -> None:
        with self.assertRaises(TypeError):
            Hash("abcd")


class PeerTests(unittest.TestCase):
    def test_last_seen_cannot_precede_date_added(self) -> None:
        with self.assertRaises(ValueError):
            Peer(address=PeerAddress.parse("10.0.0.1:1"), date_added=10, last_seen=9)


if __name__ == "__main__":
    unittest.main()
