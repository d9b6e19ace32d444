import json
import unittest

from diarycompanion.backend.app.encryption import DecryptionError, EncryptionService


class EncryptionTests(unittest.TestCase):
    def setUp(self):
        self.service = EncryptionService("correct horse", iterations=1000)

    def test_round_trip_is_deep_equal(self):
        value = {"content": "Dear diary, café ☕", "scores": [0.5, -1.0], "nested": {"ok": True, "none": None}}
        self.assertEqual(self.service.decrypt_json(self.service.encrypt_json(value)), value)

    def test_round_trip_plain_string(self):
        self.assertEqual(self.service.decrypt_json(self.service.encrypt_json("hello")), "hello")

    def test_fresh_salt_and_iv_per_call(self):
        first = json.loads(self.service.encrypt_json("same"))
        second = json.loads(self.service.encrypt_json("same"))
        self.assertNotEqual(first["data"], second["data"])
        self.assertNotEqual(first["salt"], second["salt"])
        self.assertEqual(first["version"], 1)

    def test_wrong_password_fails(self):
        token = self.service.encrypt_json({"a": 1})
        with self.assertRaises(DecryptionError):
            EncryptionService("wrong", iterations=1000).decrypt_json(token)

    def test_tampered_payload_fails(self):
        envelope = json.loads(self.service.encrypt_json({"a": 1}))
        envelope["data"] = envelope["data"][:-4] + ("AAAA" if not envelope["data"].endswith("AAAA") else "BBBB")
        with self.assertRaises(DecryptionError):
            self.service.decrypt_json(json.dumps(envelope))

    def test_garbage_and_unknown_version_fail(self):
        with self.assertRaises(DecryptionError):
            self.service.decrypt_json("not an envelope")
        envelope = json.loads(self.service.encrypt_json(1))
        envelope["version"] = 99
        with self.assertRaises(DecryptionError):
            self.service.decrypt_json(json.dumps(envelope))

    def test_empty_password_rejected(self):
        with self.assertRaises(ValueError):
            EncryptionService("")


if __name__ == "__main__":
    unittest.main()
